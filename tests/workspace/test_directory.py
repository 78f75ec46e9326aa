"""ディレクトリ変換のテスト"""

import os
import threading
from pathlib import Path

import pytest

from cbzin.config import ConversionConfig
from cbzin.converter.formats import ImageFormat
from cbzin.converter.scheduler import Notifier
from cbzin.errors import ConversionError, Interrupted, NothingToDo, PreconditionError
from cbzin.workspace.directory import Directory, DirectoryConversionJob, link_tree
from cbzin.workspace.search import DirImages


@pytest.fixture
def book(tmp_path: Path) -> Path:
    root = tmp_path / "book"
    (root / "ch1").mkdir(parents=True)
    (root / "cover.webp").write_bytes(b"cover")
    (root / "ch1" / "001.png").write_bytes(b"page")
    (root / "ch1" / "notes.txt").write_bytes(b"notes")
    return root


def _files(root: Path) -> list[str]:
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


def _new_job(root: Path, config: ConversionConfig, tools=None) -> DirectoryConversionJob:
    images = DirImages.search(Directory.from_path(root))
    assert images is not None
    return DirectoryConversionJob.new(images, config, tools)


class TestDirectory:
    """Directoryのテスト"""

    def test_from_path(self, book: Path) -> None:
        directory = Directory.from_path(book)
        assert directory.name == "book"
        assert directory.converted_path("jpeg") == book.parent / "book-jpeg"

    def test_not_a_directory(self, book: Path) -> None:
        """異常系: ディレクトリでない場合はPreconditionError"""
        with pytest.raises(PreconditionError):
            Directory.from_path(book / "cover.webp")

    def test_filesystem_root(self) -> None:
        """異常系: 親ディレクトリがない場合はPreconditionError"""
        with pytest.raises(PreconditionError):
            Directory.from_path(Path("/"))


class TestLinkTree:
    """link_treeのテスト"""

    def test_hard_links(self, book: Path, tmp_path: Path) -> None:
        """正常系: 同じinodeを共有する複製を作成する"""
        copy = tmp_path / "copy"
        copy.mkdir()

        link_tree(book, copy)

        assert _files(copy) == _files(book)
        assert os.path.samefile(copy / "ch1" / "001.png", book / "ch1" / "001.png")

    def test_symlink_copied_as_link(self, book: Path, tmp_path: Path) -> None:
        """正常系: シンボリックリンクは参照先ではなくリンク自体を複製する"""
        (book / "latest").symlink_to(book / "ch1", target_is_directory=True)
        copy = tmp_path / "copy"
        copy.mkdir()

        link_tree(book, copy)

        assert (copy / "latest").is_symlink()
        assert os.readlink(copy / "latest") == str(book / "ch1")

    def test_existing_entry(self, book: Path, tmp_path: Path) -> None:
        """異常系: 複製先に同名のファイルがある場合はOSError"""
        copy = tmp_path / "copy"
        copy.mkdir()
        (copy / "cover.webp").write_bytes(b"")

        with pytest.raises(OSError):
            link_tree(book, copy)


class TestDirectoryConversionJob:
    """DirectoryConversionJobのテスト"""

    def test_convert_to_jpeg(self, book: Path, tools) -> None:
        """正常系: WebPはPNG経由、PNGは直接JPEGに変換し、元のディレクトリは変更しない"""
        before = _files(book)
        job = _new_job(book, ConversionConfig(ImageFormat.JPEG), tools)
        assert len(job) == 2

        output = job.run()

        assert output == book.parent / "book-jpeg"
        assert _files(output) == ["ch1/001.jpg", "ch1/notes.txt", "cover.jpg"]
        assert _files(book) == before
        assert (book / "cover.webp").read_bytes() == b"cover"
        assert len(tools.calls) == 3

    def test_webp_only_requires_two_calls(self, tmp_path: Path, tools) -> None:
        """正常系: WebPからJPEGへの変換は2回ツールを呼び出す"""
        root = tmp_path / "pages"
        root.mkdir()
        (root / "a.webp").write_bytes(b"a")

        _new_job(root, ConversionConfig(ImageFormat.JPEG), tools).run()

        assert [(c.source, c.target) for c in tools.calls] == [
            (ImageFormat.WEBP, ImageFormat.PNG),
            (ImageFormat.PNG, ImageFormat.JPEG),
        ]

    @pytest.mark.parametrize(
        "name,sibling",
        [
            pytest.param("book-avif", None, id="正常系: 変換済みの名前"),
            pytest.param("book", "book-avif", id="正常系: 変換後のディレクトリが存在"),
        ],
    )
    def test_already_converted(self, tmp_path: Path, name: str, sibling: str | None) -> None:
        root = tmp_path / name
        root.mkdir()
        (root / "1.jpg").write_bytes(b"")
        if sibling is not None:
            (tmp_path / sibling).mkdir()

        with pytest.raises(NothingToDo):
            _new_job(root, ConversionConfig(ImageFormat.AVIF))

    def test_nothing_to_convert(self, tmp_path: Path) -> None:
        root = tmp_path / "book"
        root.mkdir()
        (root / "1.avif").write_bytes(b"")

        with pytest.raises(NothingToDo):
            _new_job(root, ConversionConfig(ImageFormat.AVIF))

    def test_failure_removes_copy(self, book: Path, fake_tools) -> None:
        """異常系: 変換に失敗した場合は複製を削除する"""
        tools = fake_tools(
            failing=[(ImageFormat.PNG, ImageFormat.AVIF)], backup_fails=True
        )
        job = _new_job(book, ConversionConfig(ImageFormat.AVIF, force=True), tools)

        with pytest.raises(ConversionError):
            job.run()

        assert not (book.parent / "book-avif").exists()
        assert (book / "ch1" / "001.png").exists()

    def test_copy_created_after_planning(self, book: Path, tools) -> None:
        """異常系: 実行時に複製先が存在する場合は削除せずにPreconditionError"""
        job = _new_job(book, ConversionConfig(ImageFormat.JPEG), tools)
        (book.parent / "book-jpeg").mkdir()
        (book.parent / "book-jpeg" / "keep.txt").write_bytes(b"")

        with pytest.raises(PreconditionError):
            job.run()

        assert (book.parent / "book-jpeg" / "keep.txt").exists()

    @pytest.mark.parametrize(
        "files",
        [
            pytest.param(
                {"a.jpg": b"ORIGINAL JPEG", "a.png": b"png data"},
                id="異常系: 変換後の名前が既存の画像と重なる",
            ),
            pytest.param(
                {"a.webp": b"webp data", "a.png": b"png data"},
                id="異常系: 中間ファイルの名前が既存の画像と重なる",
            ),
        ],
    )
    def test_name_collision(self, tmp_path: Path, tools, files: dict[str, bytes]) -> None:
        """異常系: 元のファイルを上書きする組み合わせはPreconditionErrorで何も変更しない"""
        root = tmp_path / "comic"
        root.mkdir()
        for name, data in files.items():
            (root / name).write_bytes(data)

        with pytest.raises(PreconditionError):
            _new_job(root, ConversionConfig(ImageFormat.JPEG), tools)

        assert not (tmp_path / "comic-jpeg").exists()
        assert {p.name: p.read_bytes() for p in root.iterdir()} == files
        assert tools.calls == []

    def test_interrupt_removes_copy(self, book: Path, fake_tools) -> None:
        """異常系: 中断された場合は複製を削除し、元のディレクトリは変更しない"""
        before = _files(book)
        tools = fake_tools(delay=60)
        job = _new_job(book, ConversionConfig(ImageFormat.JPEG, workers=2), tools)
        notifier = Notifier(handle_sigint=False)
        timer = threading.Timer(0.5, notifier.interrupt)
        timer.start()

        try:
            with pytest.raises(Interrupted):
                job.run(notifier=notifier)
        finally:
            timer.cancel()

        assert not (book.parent / "book-jpeg").exists()
        assert _files(book) == before
        assert (book / "cover.webp").read_bytes() == b"cover"

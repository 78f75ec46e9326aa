"""WorkspaceGuardのテスト"""

from pathlib import Path
from unittest.mock import patch

import pytest

from cbzin.workspace.guard import WorkspaceGuard


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    path = tmp_path / "book"
    (path / "sub").mkdir(parents=True)
    (path / "sub" / "001.jpg").write_bytes(b"image")
    return path


class TestWorkspaceGuard:
    """WorkspaceGuardのテスト"""

    def test_removes_on_exit(self, workspace: Path) -> None:
        """正常系: 終了時にディレクトリを再帰的に削除する"""
        with WorkspaceGuard(workspace) as guard:
            assert guard.active
        assert not workspace.exists()
        assert not guard.active

    def test_removes_on_error(self, workspace: Path) -> None:
        """正常系: 例外で終了した場合も削除する"""
        with pytest.raises(RuntimeError):
            with WorkspaceGuard(workspace):
                raise RuntimeError("failed")
        assert not workspace.exists()

    def test_keep(self, workspace: Path) -> None:
        """正常系: keep()後は削除しない"""
        with WorkspaceGuard(workspace) as guard:
            assert guard.keep() == workspace
        assert workspace.exists()
        assert guard.path == workspace

    def test_missing_directory(self, tmp_path: Path) -> None:
        """正常系: 作成前に終了しても例外にならない"""
        with WorkspaceGuard(tmp_path / "never-created"):
            pass

    def test_release_once(self, workspace: Path) -> None:
        """正常系: 削除処理は1回だけ行う"""
        guard = WorkspaceGuard(workspace)
        with patch("cbzin.workspace.guard.shutil.rmtree") as rmtree:
            guard.release()
            guard.release()
        rmtree.assert_called_once_with(workspace)

    def test_rmtree_error_is_logged(self, workspace: Path, caplog: pytest.LogCaptureFixture) -> None:
        """異常系: 削除の失敗はログに記録し、例外にしない"""
        with patch("cbzin.workspace.guard.shutil.rmtree", side_effect=OSError("busy")):
            WorkspaceGuard(workspace).release()
        assert "busy" in caplog.text

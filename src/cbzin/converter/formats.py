"""画像形式の定義"""

from __future__ import annotations

from enum import Enum
from pathlib import PurePath


class ImageFormat(Enum):
    """対応する画像形式

    値はアーカイブ名やディレクトリ名に付与する形式名として使用する。
    """

    JPEG = "jpeg"
    PNG = "png"
    AVIF = "avif"
    JXL = "jxl"
    WEBP = "webp"

    @property
    def extension(self) -> str:
        """変換後の画像に付与する拡張子（ドット付き）"""
        return _EXTENSIONS[self]

    @property
    def is_legacy(self) -> bool:
        """JPEG/PNGのどちらかであるか"""
        return self in (ImageFormat.JPEG, ImageFormat.PNG)

    @classmethod
    def from_extension(cls, extension: str) -> ImageFormat | None:
        """拡張子から画像形式を判定する

        Args:
            extension: 拡張子（ドットの有無、大文字小文字は問わない）

        Returns:
            対応する画像形式、対象外の拡張子の場合はNone
        """
        return _BY_EXTENSION.get(extension.lower().lstrip("."))

    @classmethod
    def from_path(cls, path: PurePath) -> ImageFormat | None:
        """ファイルパスの拡張子から画像形式を判定する"""
        if not path.suffix:
            return None
        return cls.from_extension(path.suffix)


_EXTENSIONS: dict[ImageFormat, str] = {
    ImageFormat.JPEG: ".jpg",
    ImageFormat.PNG: ".png",
    ImageFormat.AVIF: ".avif",
    ImageFormat.JXL: ".jxl",
    ImageFormat.WEBP: ".webp",
}

_BY_EXTENSION: dict[str, ImageFormat] = {
    "jpg": ImageFormat.JPEG,
    "jpeg": ImageFormat.JPEG,
    "png": ImageFormat.PNG,
    "avif": ImageFormat.AVIF,
    "jxl": ImageFormat.JXL,
    "webp": ImageFormat.WEBP,
}

"""エラー定義モジュール

cbzin全体で使用する例外階層を定義する。
NothingToDoは制御用の結果であり、失敗としては扱わない。
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence


class CbzinError(Exception):
    """cbzinの基底例外"""

    pass


class NothingToDo(CbzinError):
    """変換対象が存在しないことを表す

    変換済みのアーカイブ、対象画像を含まないディレクトリ等で送出される。
    呼び出し元は残りの入力の処理を継続する。
    """

    pass


class PreconditionError(CbzinError):
    """前提条件エラー（リトライ不可）

    無効なパス、既に存在する作業ディレクトリ等で送出される。
    """

    pass


class ToolError(CbzinError):
    """外部ツール実行エラーの基底クラス"""

    pass


class ToolSpawnError(ToolError):
    """外部ツールの起動に失敗した"""

    def __init__(self, tool: str, reason: str) -> None:
        self.tool = tool
        super().__init__(f"'{tool}' を起動できません: {reason}")


class ToolFailedError(ToolError):
    """外部ツールが異常終了した

    Attributes:
        command: 実行したコマンド
        returncode: 終了コード
        stderr: 標準エラー出力の末尾
    """

    def __init__(self, command: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        message = f"'{self.command[0]}' が終了コード {returncode} で終了しました"
        if stderr:
            message = f"{message}: {stderr}"
        super().__init__(message)


class ConversionError(CbzinError):
    """画像変換の回復不能なエラー

    代替ツールでの再試行にも失敗した場合等、複数のエラーをまとめて保持する。

    Attributes:
        causes: 原因となったエラーのリスト（発生順）
    """

    def __init__(self, message: str, causes: Iterable[BaseException] = ()) -> None:
        self.causes = list(causes)
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        if not self.causes:
            return message
        details = "; ".join(str(cause) for cause in self.causes)
        return f"{message} ({details})"


class Interrupted(CbzinError):
    """ユーザーによる中断（リトライ不可）"""

    def __init__(self, message: str = "中断されました") -> None:
        super().__init__(message)


class MissingToolsError(CbzinError):
    """必要な外部ツールが見つからない

    Attributes:
        tools: 見つからなかったツール名（ソート済み）
    """

    def __init__(self, tools: Iterable[str]) -> None:
        self.tools = sorted(tools)
        super().__init__(f"Missing tools: {', '.join(self.tools)}")

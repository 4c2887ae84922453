from typing import List, Optional


class PromptManagerError(Exception):
    """ドメイン例外の基底クラス"""


class ValidationError(PromptManagerError):
    """入力値が不正 (名前・本文の長さ、型違反など)。リトライ不可。"""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Validation failed: " + "; ".join(self.errors))


class NotFoundError(PromptManagerError):
    def __init__(self, resource: str, resource_id: str, version: Optional[int] = None):
        self.resource = resource
        self.resource_id = resource_id
        self.version = version
        if version is None:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} with id '{resource_id}' (version {version}) not found"
        super().__init__(message)


class ConflictError(PromptManagerError):
    """expected_version と保存済みバージョンが一致しない"""

    def __init__(self, resource_id: str, expected_version: int, actual_version: int):
        self.resource_id = resource_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Prompt '{resource_id}' is at version {actual_version}, expected {expected_version}"
        )


class StorageError(PromptManagerError):
    """接続失敗・ロック取得失敗・I/O失敗。元の例外を cause に保持する。"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message if cause is None else f"{message}: {cause}")


class TemplateError(PromptManagerError):
    """テンプレートエンジンが入力を拒否した"""


class MissingVariableError(TemplateError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Missing required variable: {name}")


class MissingVariablesError(TemplateError):
    def __init__(self, names: List[str]):
        self.names = list(names)
        super().__init__(f"Missing required variables: {', '.join(self.names)}")


class NotATemplateError(PromptManagerError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Prompt '{name}' is not a template")

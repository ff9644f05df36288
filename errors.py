from typing import Any


class AuthError(ValueError):
    pass


class ImportValidationError(ValueError):
    def __init__(self, errors: list[dict[str, Any]]) -> None:
        super().__init__(f"{len(errors)} invalid field(s) in import batch")
        self.errors = errors


class StoreError(ValueError):
    pass


class RowExistenceCheckError(StoreError):
    pass


class RowWriteError(StoreError):
    pass


class CategoryReferenceError(RowWriteError):
    pass


class CategoryProvisionError(StoreError):
    pass

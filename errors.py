import enum


class ErrorKind(str, enum.Enum):
    MISSING_FIELD = "missing_field"
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    BACKEND = "backend"
    LLM = "llm"


STATUS_CODES = {
    ErrorKind.MISSING_FIELD: 400,
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.BACKEND: 502,
    ErrorKind.LLM: 502,
}


class ServiceError(Exception):
    """
    Ошибка сервисного слоя с типом (kind).
    Обработчик в main.py превращает её в JSON-ответ с нужным HTTP-статусом.
    """

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def status_code(self) -> int:
        return STATUS_CODES.get(self.kind, 500)

    def to_dict(self) -> dict:
        return {"success": False, "kind": self.kind.value, "error": self.message}

from typing import Any, Optional
from pydantic import BaseModel

class ResponseModel(BaseModel):
    """Envelope for every JSON response: {code, message, data}."""
    code: int = 200
    message: str = "success"
    data: Optional[Any] = None

    @staticmethod
    def success(data: Any = None, message: str = "success"):
        return {"code": 200, "message": message, "data": data}

    @staticmethod
    def fail(code: int = 400, message: str = "error", data: Any = None):
        return {"code": code, "message": message, "data": data}

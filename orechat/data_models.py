# orechat/data_models.py
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, model_validator


class PropertySchema(BaseModel):
    type: str
    description: str
    model_config = ConfigDict(extra='ignore', frozen=True)


class ParameterSchema(BaseModel):
    """JSON-Schema shape of a tool's argument object."""
    type: str = "object"
    properties: Dict[str, PropertySchema] = {}
    required: List[str] = []
    model_config = ConfigDict(extra='ignore', frozen=True)

    @model_validator(mode='after')
    def _required_are_declared(self):
        missing = [name for name in self.required if name not in self.properties]
        if missing:
            raise ValueError(f"required properties not declared: {', '.join(missing)}")
        return self


class Tool(BaseModel):
    name: str
    description: str
    parameters: Optional[ParameterSchema] = None
    handler: Callable[[str], str]
    model_config = ConfigDict(frozen=True)

    def to_litellm(self) -> Dict:
        """Function-tool definition in the OpenAI format litellm forwards to the provider."""
        parameters = self.parameters or ParameterSchema()
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters.model_dump(),
            }
        }


class WebSearchArgs(BaseModel):
    keyword: str
    model_config = ConfigDict(extra='ignore', frozen=True)


class WebReaderArgs(BaseModel):
    url: str
    model_config = ConfigDict(extra='ignore', frozen=True)


class SearchResult(BaseModel):
    title: str
    link: str
    snippet: str
    model_config = ConfigDict(frozen=True)


class Role(str, Enum):
    USER = "user"
    ANSWER = "answer"
    REASONING = "reasoning"
    FUNCTION_CALL = "function_call"
    ERROR = "error"


class TranscriptEntry(BaseModel):
    role: Role
    text: str
    model_config = ConfigDict(frozen=True)


# --- Agent result events ---

class MessageResult(BaseModel):
    text: str
    model_config = ConfigDict(frozen=True)

    def __str__(self):
        return self.text


class ReasoningResult(BaseModel):
    text: str
    model_config = ConfigDict(frozen=True)

    def __str__(self):
        return self.text


class FunctionCallResult(BaseModel):
    name: str
    arguments: str
    model_config = ConfigDict(frozen=True)

    def __str__(self):
        return f"{self.name}({self.arguments})"


class DispatchError(BaseModel):
    """Raised-and-caught failure of a dispatched question, shown in the transcript."""
    message: str
    model_config = ConfigDict(frozen=True)

    def __str__(self):
        return self.message


ResultEvent = Union[MessageResult, ReasoningResult, FunctionCallResult]

EVENT_ROLES = {
    MessageResult: Role.ANSWER,
    ReasoningResult: Role.REASONING,
    FunctionCallResult: Role.FUNCTION_CALL,
    DispatchError: Role.ERROR,
}

from pydantic import BaseModel, ConfigDict, Field


class ConvertImageIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    imageUrl: str | None = Field(default=None, max_length=8192)
    url: str | None = Field(default=None, max_length=8192)


class InlineData(BaseModel):
    mimeType: str
    data: str


class VertexAIPart(BaseModel):
    inlineData: InlineData


class ConvertImageData(BaseModel):
    base64Image: str
    mimeType: str
    dataUri: str
    originalUrl: str
    size: int
    vertexAI: VertexAIPart


class ConvertImageOut(BaseModel):
    success: bool = True
    data: ConvertImageData


class ErrorBody(BaseModel):
    message: str
    code: str
    status: int | None = None


class ErrorOut(BaseModel):
    success: bool = False
    error: ErrorBody

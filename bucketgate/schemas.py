from pydantic import BaseModel, ConfigDict, Field


class BucketConnection(BaseModel):
    bucket_id: str = Field(min_length=1)
    endpoint: str
    access_key_id: str
    secret_access_key: str
    secure: bool = False
    bucket_name: str
    location: str = ""
    authorized_users: list[str] = Field(default_factory=list)  # emails
    authorized_groups: list[str] = Field(default_factory=list)

    def redacted(self) -> "BucketConnection":
        return self.model_copy(update={"secret_access_key": ""})


class ConnectionDeleteRequest(BaseModel):
    bucket_id: str = Field(min_length=1)


class MessageOut(BaseModel):
    message: str


class ObjectListRequest(BaseModel):
    bucket: str
    prefix: str = ""


class ObjectOut(BaseModel):
    key: str
    size: int
    content_type: str = ""


class ObjectFileRequest(BaseModel):
    bucket: str
    filename: str = Field(min_length=1)


class PresignDownloadRequest(BaseModel):
    bucket: str
    key: str = Field(min_length=1)
    expires_seconds: int | None = None
    disposition: str | None = None
    filename: str | None = None


class PresignOut(BaseModel):
    url: str


class MoveRequest(BaseModel):
    bucket: str
    from_key: str | None = None
    to_key: str | None = None
    from_prefix: str | None = None
    to_prefix: str | None = None
    overwrite: bool = False


class MoveOut(BaseModel):
    moved: int


class MultipartInitiateRequest(BaseModel):
    bucket: str
    key: str
    content_type: str | None = None


class MultipartInitiateOut(BaseModel):
    bucket: str
    key: str
    upload_id: str


class MultipartPresignPartRequest(BaseModel):
    bucket: str
    key: str
    upload_id: str
    part_number: int
    expires_seconds: int | None = None


class CompletedPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    part_number: int
    etag: str


class MultipartCompleteRequest(BaseModel):
    bucket: str
    key: str
    upload_id: str
    parts: list[CompletedPart] = Field(default_factory=list)


class MultipartAbortRequest(BaseModel):
    bucket: str
    key: str
    upload_id: str

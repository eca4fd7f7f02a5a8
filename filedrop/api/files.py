import json
from typing import Any, BinaryIO, Iterator, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import FormData, UploadFile

from filedrop.api.auth import require_api_key
from filedrop.api.schemas import FileRecordOut
from filedrop.api.uploads import read_upload_form
from filedrop.features.storage.data.local_fs import CHUNK_SIZE
from filedrop.features.storage.domain.errors import InvalidMetadata
from filedrop.features.storage.domain.models import IngestRequest
from filedrop.features.storage.service.api import IngestionService, ingestion

app_files = APIRouter(prefix="/api/v1", tags=["files"], dependencies=[Depends(require_api_key)])


def get_ingestion_service() -> IngestionService:
    return ingestion


def _parse_metadata(raw: Optional[str]) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidMetadata(f"metadata is not valid JSON: {e.msg}")
    if not isinstance(parsed, dict):
        raise InvalidMetadata("metadata must be a JSON object")
    return parsed


def _iter_stream(stream: BinaryIO) -> Iterator[bytes]:
    try:
        for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):
            yield chunk
    finally:
        stream.close()


UPLOAD_FORM_SCHEMA = {
    "requestBody": {
        "required": True,
        "content": {
            "multipart/form-data": {
                "schema": {
                    "type": "object",
                    "required": ["file"],
                    "properties": {
                        "file": {"type": "string", "format": "binary", "description": "The file to store"},
                        "customer_id": {"type": "string"},
                        "source": {"type": "string"},
                        "metadata": {"type": "string", "description": "JSON object with arbitrary metadata"},
                    },
                }
            }
        },
    }
}


def _form_text(form: FormData, name: str) -> Optional[str]:
    value = form.get(name)
    if isinstance(value, str) and value:
        return value
    return None


@app_files.post(
    "/files",
    response_model=FileRecordOut,
    status_code=status.HTTP_201_CREATED,
    openapi_extra=UPLOAD_FORM_SCHEMA,
)
async def create_file(request: Request, service: IngestionService = Depends(get_ingestion_service)):
    """
    Upload a file (multipart/form-data).

    Accepted types: json, csv, plain text, pdf and zip.
    The body is read here rather than by FastAPI so that an oversized upload
    is cut off while it streams in.
    """
    form = await read_upload_form(request, service.max_upload_bytes)
    try:
        file = form.get("file")
        if not isinstance(file, UploadFile):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file uploaded")

        ingest = IngestRequest(
            stream=file.file,
            original_name=file.filename or "",
            content_type=file.content_type or "",
            declared_size=file.size,
            owner_tag=_form_text(form, "customer_id"),
            source=_form_text(form, "source"),
            custom_metadata=_parse_metadata(_form_text(form, "metadata")),
        )
        record = await run_in_threadpool(service.create_file, ingest)
    finally:
        await form.close()

    return FileRecordOut.from_record(record)


@app_files.get("/files/{file_id}", response_model=FileRecordOut)
def get_file(file_id: str, service: IngestionService = Depends(get_ingestion_service)):
    """Get the metadata of a stored file."""
    return FileRecordOut.from_record(service.get_file(file_id))


@app_files.get("/files/{file_id}/content")
def download_file(file_id: str, service: IngestionService = Depends(get_ingestion_service)):
    """Download the stored bytes."""
    record, stream = service.open_file(file_id)
    headers = {
        "Content-Disposition": f'attachment; filename="{record.original_name}"',
        "Content-Length": str(record.size_bytes),
    }
    return StreamingResponse(_iter_stream(stream), media_type=record.content_type, headers=headers)


@app_files.delete("/files/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_file(file_id: str, service: IngestionService = Depends(get_ingestion_service)):
    """Delete a file and its metadata."""
    service.delete_file(file_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

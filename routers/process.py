# routers/process.py
import logging

from fastapi import APIRouter, Request, Response, status
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import FormData, UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

import config
from rate_limiter import limiter, get_process_rate_limit
from schemas.process_schemas import ProcessParameters
from services.errors import MalformedForm, MissingFile
from services.image_processing import process_image

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Image Processing"])

PROCESS_PATH = "/process"
ALLOWED_METHODS = ["POST", "OPTIONS"]

# Headers sent on every /process response, including errors.
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": ", ".join(ALLOWED_METHODS),
    "Access-Control-Allow-Headers": "Content-Type",
}


async def read_form(request: Request) -> FormData:
    content_type = request.headers.get("content-type", "")
    if not content_type.lower().startswith("multipart/form-data"):
        raise MalformedForm("request Content-Type isn't multipart/form-data")
    try:
        return await request.form()
    except (MultiPartException, StarletteHTTPException) as e:
        raise MalformedForm(getattr(e, "detail", None) or getattr(e, "message", None) or str(e))


async def read_image_upload(form: FormData) -> bytes:
    upload = form.get("image")
    if upload is None:
        raise MissingFile("no such file")
    if not isinstance(upload, UploadFile):
        raise MissingFile("field is not a file upload")

    # Chunked uploads carry no Content-Length, so never read past the limit.
    contents = await upload.read(config.MAX_UPLOAD_SIZE_BYTES + 1)
    if len(contents) > config.MAX_UPLOAD_SIZE_BYTES:
        raise MalformedForm(
            f"file too large (over {config.MAX_UPLOAD_SIZE_BYTES} bytes, maximum is {config.MAX_UPLOAD_SIZE_MB}MB)",
            too_large=True,
        )
    return contents


@router.options(PROCESS_PATH, summary="CORS preflight for /process")
async def process_preflight():
    return Response(status_code=status.HTTP_200_OK)


@router.post(
    PROCESS_PATH,
    response_class=Response,
    summary="Resize and adjust an uploaded image",
    responses={
        status.HTTP_200_OK: {"content": {"image/png": {}}, "description": "The processed PNG."},
        status.HTTP_400_BAD_REQUEST: {"content": {"text/plain": {}}, "description": "Bad form, missing file or undecodable image."},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"content": {"text/plain": {}}, "description": "Upload exceeds the size limit."},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"content": {"text/plain": {}}, "description": "PNG encoding failed."},
    },
)
@limiter.limit(get_process_rate_limit)
async def process(request: Request):
    """
    Accepts a multipart form with an `image` file and optional `width`, `height`,
    `contrast`, `sharpness`, `aspect`, `resize` and `fillColourR/G/B` fields, and
    returns the processed image as PNG.
    """
    form = await read_form(request)
    try:
        params = ProcessParameters.from_form(form, strict=config.STRICT_PARAMS)
        logger.info("Parsed fields", extra={"parameters": params.model_dump(mode="json")})
        contents = await read_image_upload(form)
    finally:
        await form.close()

    # Decoding and resampling are CPU bound; keep them off the event loop.
    png = await run_in_threadpool(process_image, contents, params)
    return Response(content=png, media_type="image/png")


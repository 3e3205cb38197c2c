"""FastAPI application for the document workflow engine."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from docflow.config import get_settings
from docflow.database import init_db
from docflow.errors import WorkflowError
from docflow.routes import router


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db()
    yield


app = FastAPI(
    title="Document Workflow API",
    description="Document upload, approval workflow, comments and audit trail",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(WorkflowError)
def workflow_error_handler(_: Request, exc: WorkflowError):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": exc.code,
                "message": exc.message,
                "retryable": exc.retryable,
                "meta": exc.meta or None,
            }
        },
    )


app.include_router(router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)

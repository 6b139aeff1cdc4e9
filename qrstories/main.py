import logging
from pathlib import Path
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
from pythonjsonlogger import jsonlogger
from .config import Settings, load_settings
from .core import MongoBackend
from .errors import StoryError
from .ids import StoryIdGenerator
from .metrics import init_metrics
from .routes import api_router, router
from .service import StoryService

STATIC_DIR = Path(__file__).parent / 'static'

logger = logging.getLogger('qrstories')


def setup_logging(level: str = 'INFO') -> None:
    """Structured JSON logging on the ``qrstories`` logger"""
    if not any(isinstance(h.formatter, jsonlogger.JsonFormatter) for h in logger.handlers):
        handler = logging.StreamHandler()
        formatter = jsonlogger.JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)


def build_service(backend: MongoBackend, settings: Settings) -> StoryService:
    return StoryService(
        backend.blobs,
        backend.stories,
        id_generator=StoryIdGenerator(settings.story_id_prefix, settings.story_id_length),
        default_content_type=settings.default_content_type,
        max_image_bytes=settings.max_image_bytes,
    )


def error_body(message: str, code: str) -> dict:
    return {'success': False, 'error': message, 'code': code}


def create_app(settings: Optional[Settings] = None, service: Optional[StoryService] = None) -> FastAPI:
    """Build the FastAPI app.

    When ``service`` is given it is used as is and no database connection is
    opened on startup.
    """
    settings = settings or load_settings()
    setup_logging(settings.log_level)

    app = FastAPI(title='QR Stories API', version='1.0.0')
    app.state.settings = settings
    app.state.service = service
    app.state.backend = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials='*' not in settings.cors_origins,
        allow_methods=['*'],
        allow_headers=['*'],
    )

    app.include_router(api_router, prefix='/api')
    app.include_router(router)
    app.mount('/static', StaticFiles(directory=STATIC_DIR), name='static')

    @app.get('/', response_class=PlainTextResponse)
    async def root():
        return 'QR image backend running'

    @app.get('/healthz')
    async def healthz():
        return {'status': 'ok'}

    @app.exception_handler(StoryError)
    async def story_error_handler(request: Request, exc: StoryError):
        if exc.status_code >= 500:
            logger.error({'msg': 'request_failed', 'path': request.url.path, 'code': exc.code, 'error': exc.message})
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.code))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get('msg', 'Invalid request') if errors else 'Invalid request'
        return JSONResponse(status_code=400, content=error_body(message, 'invalid_input'))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception({'msg': 'unhandled_error', 'path': request.url.path})
        return JSONResponse(status_code=500, content=error_body('Internal server error', 'internal_error'))

    @app.middleware('http')
    async def log_requests(request: Request, call_next):
        logger.info({'msg': 'request_start', 'method': request.method, 'path': request.url.path})
        response = await call_next(request)
        logger.info({'msg': 'request_end', 'status': response.status_code})
        return response

    @app.on_event('startup')
    async def startup():
        init_metrics(settings.metrics_port)
        if app.state.service is not None:
            return
        # the stores are required, a failed connection aborts startup
        backend = await MongoBackend(settings).connect()
        app.state.backend = backend
        app.state.service = build_service(backend, settings)
        logger.info({'msg': 'stores_ready', 'db': settings.db_name})

    @app.on_event('shutdown')
    async def shutdown():
        if app.state.backend is not None:
            await app.state.backend.close()
            app.state.backend = None
            app.state.service = None

    return app


app = create_app()

import logging
import traceback
from contextlib import asynccontextmanager
from typing import Any, List, Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from bniconnect.backend import Backend
from bniconnect.errors import BniError
from bniconnect.google_helpers import PORT

logger = logging.getLogger("bni_backend")


class UserRef(BaseModel):
    userId: Optional[str] = None


class AnswerIn(BaseModel):
    userId: Optional[str] = None
    userName: Optional[str] = None
    questionnaireId: Optional[str] = None
    questionId: Optional[str] = None
    questionTitle: Optional[str] = None
    answer: Optional[Any] = None
    correct: Optional[bool] = False
    isCaptcha: Optional[bool] = False


class SyncAnswer(BaseModel):
    questionId: Optional[str] = None
    questionTitle: Optional[str] = None
    answer: Optional[Any] = None
    isCaptcha: Optional[bool] = False


class SyncAnswersIn(BaseModel):
    userId: Optional[str] = None
    userName: Optional[str] = None
    answers: List[SyncAnswer] = []


class SensibleIn(BaseModel):
    userId: Optional[str] = None
    tagName: Optional[str] = None
    answer: Optional[Any] = None
    questionId: Optional[str] = None
    questionTitle: Optional[str] = None
    isCaptcha: Optional[bool] = False


class CatalogIn(BaseModel):
    tags: List[dict] = []
    questions: List[dict] = []
    questionnaires: List[dict] = []


def create_app(backend: Optional[Backend] = None) -> FastAPI:
    backend = backend or Backend()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await backend.startup()
        yield

    app = FastAPI(lifespan=lifespan)
    app.state.backend = backend

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Allow all origins for dev
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BniError)
    async def bni_error_handler(request: Request, exc: BniError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": str(exc.errors())})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"{request.method} {request.url.path} crashed: {exc}\n{traceback.format_exc()}")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.get("/api/health")
    async def health():
        return {"ok": True}

    # -----------------------
    # Catalog
    # -----------------------

    @app.get("/api/db")
    async def get_db(scope: Optional[str] = None):
        return await backend.handle_get_db(scope)

    @app.put("/api/db")
    async def put_db(body: CatalogIn):
        return await backend.handle_put_db(body.model_dump())

    @app.get("/api/questionnaires/{questionnaire_id}/questions")
    async def questionnaire_questions(questionnaire_id: str, userId: Optional[str] = None):
        return await backend.handle_questionnaire_questions(questionnaire_id, userId)

    @app.get("/api/user/{user_id}/questionnaires-progress")
    async def questionnaires_progress(user_id: str):
        return await backend.handle_questionnaires_progress(user_id)

    @app.get("/api/images/{filename}")
    async def get_image(filename: str):
        raw, content_type = await backend.handle_get_image(filename)
        return Response(content=raw, media_type=content_type)

    # -----------------------
    # Random questions
    # -----------------------

    @app.get("/api/questions/random/{user_id}")
    async def random_questions(user_id: str, n: Optional[str] = None, count: Optional[str] = None):
        return await backend.handle_random_questions(user_id, n or count)

    @app.post("/api/earn/random")
    async def earn_random(body: UserRef):
        return await backend.handle_earn_random(body.userId)

    @app.post("/api/skip/random")
    async def skip_random(body: UserRef):
        return await backend.handle_skip_random(body.userId)

    # -----------------------
    # Answers / questionnaires
    # -----------------------

    @app.post("/api/answers/append")
    async def append_answer(body: AnswerIn):
        return await backend.handle_append_answer(body.model_dump())

    @app.post("/api/questionnaire/{questionnaire_id}/sync-answers")
    async def sync_answers(questionnaire_id: str, body: SyncAnswersIn):
        return await backend.handle_sync_answers(questionnaire_id, body.model_dump())

    @app.get("/api/questionnaire/{questionnaire_id}/answered/{user_id}")
    async def answered(questionnaire_id: str, user_id: str):
        return await backend.handle_answered(questionnaire_id, user_id)

    @app.post("/api/questionnaire/{questionnaire_id}/validate")
    async def validate_questionnaire(questionnaire_id: str, body: UserRef):
        return await backend.handle_validate(questionnaire_id, body.userId)

    @app.post("/api/questionnaire/{questionnaire_id}/mark-completed")
    async def mark_completed(questionnaire_id: str, body: UserRef):
        return await backend.handle_mark_completed(questionnaire_id, body.userId)

    # -----------------------
    # User
    # -----------------------

    @app.post("/api/user/sensible")
    async def sensible(body: SensibleIn):
        return await backend.handle_sensible(body.model_dump())

    @app.get("/api/user/{user_id}/wallet")
    async def wallet(user_id: str):
        return await backend.handle_wallet(user_id)

    @app.post("/api/user/request-withdraw")
    async def request_withdraw(body: UserRef):
        return await backend.handle_request_withdraw(body.userId)

    # -----------------------
    # Admin
    # -----------------------

    @app.get("/api/admin/payments")
    async def list_payments():
        return await backend.handle_list_payments()

    @app.post("/api/admin/payments/{payment_id}/validate")
    async def validate_payment(payment_id: str):
        return await backend.handle_validate_payment(payment_id)

    @app.post("/api/admin/payments/{payment_id}/cancel")
    async def cancel_payment(payment_id: str):
        return await backend.handle_cancel_payment(payment_id)

    @app.get("/api/admin/settings")
    async def get_settings():
        return await backend.handle_get_settings()

    @app.put("/api/admin/settings")
    async def put_settings(body: dict):
        return await backend.handle_put_settings(body)

    @app.delete("/api/admin/answers/{answer_id}")
    async def delete_answer(answer_id: str):
        return await backend.handle_delete_answer(answer_id)

    @app.delete("/api/admin/users/{user_id}")
    async def delete_user(user_id: str):
        return await backend.handle_delete_user(user_id)

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)

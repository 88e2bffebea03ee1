"""Natural-language questions over the caller's data."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from medstock.api.deps import get_db, get_current_user
from medstock.core.exceptions import BusinessError, DomainError
from medstock.models.user import User
from medstock.schemas.chatbot import ChatbotRequest, ChatbotResponse
from medstock.services import chatbot_service

router = APIRouter()


@router.post("", response_model=ChatbotResponse)
def chat(
    body: ChatbotRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return chatbot_service.handle_query(db, current_user, body.query, body.conversation_history)
    except DomainError:
        raise
    except Exception as e:
        raise BusinessError.server_error(e, message=chatbot_service.APOLOGY_REPLY)

from fastapi import APIRouter, Depends
from src.auth.schemas import Actor
from src.auth.dependencies import get_current_actor

router = APIRouter()

@router.get("/me", response_model=Actor)
def read_current_actor(actor: Actor = Depends(get_current_actor)):
    """Get the authenticated caller with its resolved role"""
    return actor

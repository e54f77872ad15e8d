from datetime import datetime

from fastapi import APIRouter, Depends

from ..deps import get_learner_id, get_now, get_review_service
from ..models.catalog import (
    CardCreateRequest,
    Deck,
    DeckCreateRequest,
    DeckDetailResponse,
    DeckListResponse,
    VocabularyItem,
)
from ..service import ReviewService

router = APIRouter(tags=["decks"])


@router.get("", response_model=DeckListResponse)
def list_decks(service: ReviewService = Depends(get_review_service)) -> DeckListResponse:
    return DeckListResponse(items=service.list_decks())


@router.post("", response_model=Deck, status_code=201, summary="カスタムデッキを作成")
def create_deck(
    req: DeckCreateRequest,
    service: ReviewService = Depends(get_review_service),
) -> Deck:
    return service.create_deck(req.name, req.description)


@router.get("/{deck_id}", response_model=DeckDetailResponse)
def get_deck(
    deck_id: str,
    learner_id: str = Depends(get_learner_id),
    service: ReviewService = Depends(get_review_service),
    now: datetime = Depends(get_now),
) -> DeckDetailResponse:
    return service.deck_detail(learner_id, deck_id, now)


@router.delete("/{deck_id}")
def delete_deck(
    deck_id: str,
    learner_id: str = Depends(get_learner_id),
    service: ReviewService = Depends(get_review_service),
) -> dict[str, object]:
    """デッキとカードを削除し、学習者の該当カードの復習状態も消す。"""

    removed = service.delete_deck(learner_id, deck_id)
    return {"deleted": True, "removed_cards": len(removed)}


@router.post(
    "/{deck_id}/cards",
    response_model=VocabularyItem,
    status_code=201,
    summary="デッキに単語カードを追加",
)
def add_card(
    deck_id: str,
    req: CardCreateRequest,
    service: ReviewService = Depends(get_review_service),
) -> VocabularyItem:
    return service.add_card(deck_id, req)

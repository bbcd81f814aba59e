"""Extraction oracle: chat text or screenshots in, candidates out.

The oracle is best-effort. Model output is validated item by item, malformed
candidates are dropped, and any failure (network, quota, unparseable output)
yields an empty result flagged as failed instead of an exception.
"""

import logging
from typing import Any, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel, ValidationError

from plusone import metrics
from plusone.ai.llm_service import LLMService
from plusone.ai.prompts import ChatExtractionPrompt
from plusone.ledger.models import (
    AnalysisResult,
    CandidateInteraction,
    CandidateOrder,
    CandidateProduct,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

ANALYSIS_FAILED_MESSAGE = "Analysis failed, check the API key or network connection."


def _validate_items(items: Any, model: Type[ModelT], label: str) -> list[ModelT]:
    """Validate a list of raw items, dropping the malformed ones."""
    if not isinstance(items, list):
        if items is not None:
            logger.warning(f"Expected a list of {label}, got {type(items).__name__}")
        return []

    valid: list[ModelT] = []
    for item in items:
        try:
            valid.append(model.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Dropping malformed {label} candidate: {e.error_count()} errors")
    return valid


def parse_analysis(payload: dict[str, Any]) -> AnalysisResult:
    """Build an AnalysisResult from the model's JSON object."""
    interactions = payload.get("aiInteractions", payload.get("interactions"))
    return AnalysisResult(
        orders=_validate_items(payload.get("orders"), CandidateOrder, "order"),
        products=_validate_items(payload.get("products"), CandidateProduct, "product"),
        interactions=_validate_items(interactions, CandidateInteraction, "interaction"),
    )


class ExtractionOracle:
    """Turns raw chat content into candidate orders, products and interactions."""

    def __init__(self, llm: Optional[LLMService] = None):
        self.llm = llm or LLMService()

    async def analyze(
        self,
        content: str | Sequence[bytes],
        product_context: str = "",
        seller_name: Optional[str] = None,
    ) -> AnalysisResult:
        """
        Run one extraction pass. Never raises.

        Args:
            content: Chat text, or a list of PNG screenshots
            product_context: Serialized active products
            seller_name: Authorized sender whose posts may create products

        Returns:
            Extracted candidates; `failed` is set (with empty lists) on error
        """
        prompt = ChatExtractionPrompt(product_context=product_context, seller_name=seller_name)

        if isinstance(content, str):
            input_kind = "text"
            user_prompt = prompt.text_prompt(content)
            images: Sequence[bytes] = ()
        else:
            input_kind = "image"
            images = list(content)
            user_prompt = prompt.image_prompt(len(images))

        try:
            payload = await self.llm.call_llm_json(
                prompt=user_prompt,
                system_prompt=prompt.system_prompt(),
                images=images,
            )
        except Exception as e:
            logger.error(f"Extraction failed ({input_kind}): {e}")
            metrics.record_oracle_call(input_kind, success=False)
            return AnalysisResult.empty(error=ANALYSIS_FAILED_MESSAGE)

        metrics.record_oracle_call(input_kind, success=True)
        result = parse_analysis(payload)
        logger.info(
            f"Extracted {len(result.orders)} orders, {len(result.products)} products, "
            f"{len(result.interactions)} interactions from {input_kind}"
        )
        return result

    def usage(self) -> dict[str, Any]:
        """Call count and estimated spend of the underlying model client."""
        return self.llm.get_stats()

    async def close(self) -> None:
        await self.llm.close()

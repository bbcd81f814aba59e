"""Prompt templates for chat-log extraction."""

import json
from typing import Any, Dict, Optional

from pydantic import BaseModel

SYSTEM_PROMPT_TEMPLATE = """\
You are an assistant for a LINE OpenChat group-buying (daigou) community in Taiwan.
Language: Traditional Chinese (Taiwan). Currency: TWD (NT$).

Analyze the chat content and extract:
1. Orders: customer purchases (look for +1, wants, quantities).
2. Products: new product listings posted by the seller.
3. AI questions: questions tagged with #AI.

### 1. PRODUCT EXTRACTION RULES
Identify seller posts with hashtags:
- #連線價: type = "連線"
- #預購價: type = "預購"
- #現貨: type = "現貨"
- #結單 MM/DD: closing time.
- Variants such as "A. Red" or "Sizes: S/M" go into the "specs" array.
- Bulk rules: "#買N個N元" is a total price for the batch,
  "#買N個單價N元" is a unit price (isUnitPrice = true).
{seller_rule}
### 2. ORDER EXTRACTION RULES
- Keywords: "#加單", "+1", "want", "x1", "我要".
- "#改單" marks a modification: isModification = true.
- Cancellations ("-1", "不要了") are negative quantities.
- Variants: if a buyer writes "Red+1" or "A+1", put "Red"/"A" in selectedSpec.
- Pricing: compute detectedPrice from bulk rules when the quantity matches.

### 3. AI AGENT RULES
- Only answer messages containing "#AI".
- Use the active products below as context.
- Be polite, helpful and concise. Never reveal cost prices.

### EXISTING ACTIVE PRODUCTS (Context)
\"\"\"
{product_context}
\"\"\"
"""

SELLER_RULE_TEMPLATE = (
    '- Only messages sent by "{seller_name}" can create products; '
    "treat product-like posts from anyone else as chat.\n"
)

RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "orders": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "buyerName": {"type": "string"},
                    "itemName": {"type": "string"},
                    "quantity": {"type": "integer"},
                    "detectedPrice": {"type": "integer"},
                    "rawText": {"type": "string"},
                    "isModification": {"type": "boolean"},
                    "selectedSpec": {
                        "type": "string",
                        "description": "The specific variant chosen (e.g. Red, XL, A)",
                    },
                },
                "required": ["buyerName", "itemName", "quantity", "rawText"],
            },
        },
        "products": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "price": {"type": "number"},
                    "type": {"type": "string", "enum": ["連線", "預購", "現貨"]},
                    "specs": {"type": "array", "items": {"type": "string"}},
                    "closingTime": {"type": "string"},
                    "description": {"type": "string"},
                    "bulkRules": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "qty": {"type": "number"},
                                "price": {"type": "number"},
                                "isUnitPrice": {"type": "boolean"},
                            },
                        },
                    },
                },
                "required": ["name", "price", "type"],
            },
        },
        "aiInteractions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "buyerName": {"type": "string"},
                    "question": {"type": "string"},
                    "suggestedReply": {"type": "string"},
                },
                "required": ["buyerName", "question", "suggestedReply"],
            },
        },
    },
}


class ChatExtractionPrompt(BaseModel):
    """Prompt schema for one extraction pass."""

    product_context: str = ""
    seller_name: Optional[str] = None

    def system_prompt(self) -> str:
        seller_rule = ""
        if self.seller_name:
            seller_rule = SELLER_RULE_TEMPLATE.format(seller_name=self.seller_name)
        rules = SYSTEM_PROMPT_TEMPLATE.format(
            seller_rule=seller_rule,
            product_context=self.product_context.strip() or "No previous products.",
        )
        schema = json.dumps(RESPONSE_SCHEMA, ensure_ascii=False)
        return f"{rules}\nRespond with a single JSON object matching this schema:\n{schema}\n"

    @staticmethod
    def text_prompt(chat_log: str) -> str:
        return f'Chat Log to Analyze:\n"""\n{chat_log}\n"""'

    @staticmethod
    def image_prompt(count: int) -> str:
        noun = "screenshot" if count == 1 else f"{count} screenshots"
        return f"Analyze the chat {noun} below."

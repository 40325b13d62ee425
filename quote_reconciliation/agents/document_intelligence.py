"""
Document Intelligence Agent
Client for the external document-understanding model that turns a supplier
quote into structured line items. The engine treats the model as a noisy
oracle: output is parsed tolerantly and coerced into QuoteExtraction.
"""

import json
import re
from typing import Any, List, Optional, Sequence

from langchain_openai import ChatOpenAI
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_core.prompts import PromptTemplate

from quote_reconciliation.config import get_config
from quote_reconciliation.errors import QuoteEngineError, TransientError, UpstreamError
from quote_reconciliation.schemas.catalog import RequestedItem
from quote_reconciliation.schemas.extraction import ExtractedLineItem, QuoteExtraction, SupplierInfo
from quote_reconciliation.utils.logging import log_agent_action, setup_logging


logger = setup_logging(__name__)
config = get_config()


def get_llm(model_name: str = None):
    """Get LLM instance based on provider."""
    model = model_name or config.LLM_MODEL

    if config.LLM_PROVIDER == "gemini":
        return ChatGoogleGenerativeAI(
            model=model,
            google_api_key=config.GOOGLE_API_KEY,
            temperature=config.LLM_TEMPERATURE,
            max_output_tokens=config.LLM_MAX_TOKENS,
        )
    return ChatOpenAI(
        model=model,
        api_key=config.LLM_API_KEY,
        base_url=config.LLM_API_BASE,
        temperature=config.LLM_TEMPERATURE,
        max_tokens=config.LLM_MAX_TOKENS,
    )


EXTRACTION_PROMPT_TEMPLATE = """You are an expert at reading supplier quotes. The document may be in French or English.
Extract ALL line items. For each item capture the product name (translated to English, original kept in productNameOriginal), SKU or model number, quantity, unit price, line total, brand, description and lead time.
SKUs, model numbers and product codes are critical for matching: always capture them.
Always look for shipping, delivery or freight charges near the subtotal and total.

Items we requested, for reference:
{requested_items}

Quote document:
{document_text}

Return ONLY valid JSON in this format:
{{"supplierInfo": {{"companyName": "Acme Lighting", "quoteNumber": "Q-1001", "quoteDate": "2026-01-31", "validUntil": null, "subtotal": 300.0, "shipping": 25.0, "taxes": 39.0, "total": 364.0}}, "extractedItems": [{{"productName": "Wall Sconce", "productNameOriginal": "Applique murale", "sku": "WS-200", "quantity": 2, "unitPrice": 150.0, "totalPrice": 300.0, "brand": "Acme", "description": null, "leadTime": "4-6 weeks"}}], "notes": null}}

Rules: Numbers without currency symbols. Use null for anything not clearly readable. Include accessories and small items."""


def format_requested_items(requested_items: Sequence[RequestedItem]) -> str:
    lines = []
    for item in requested_items:
        line = f"- {item.name}"
        if item.sku:
            line += f" (SKU: {item.sku})"
        if item.brand:
            line += f" by {item.brand}"
        line += f" - Qty: {item.quantity:g}"
        lines.append(line)
    return "\n".join(lines) if lines else "- (none provided)"


def get_llm_response_text(response) -> str:
    """Pull the text out of a chat model response."""
    content = getattr(response, "content", response)
    if isinstance(content, list):
        # Some providers return content blocks
        content = "".join(
            block.get("text", "") if isinstance(block, dict) else str(block) for block in content
        )
    if not content or not str(content).strip():
        raise ValueError("Empty response from LLM")
    return str(content).strip()


def parse_extracted_json(json_str: str) -> dict:
    """
    Parse JSON response from LLM: bare, fenced in markdown, or embedded in prose.
    """
    if not json_str or not json_str.strip():
        raise ValueError("Empty response from LLM")

    json_str = json_str.strip()

    try:
        result = json.loads(json_str)
        if isinstance(result, dict) and result:
            return result
    except json.JSONDecodeError:
        pass

    match = re.search(r'```(?:json)?\s*(.*?)\s*```', json_str, re.DOTALL)
    if match:
        try:
            result = json.loads(match.group(1))
            if isinstance(result, dict) and result:
                return result
        except json.JSONDecodeError:
            pass

    start = json_str.find('{')
    end = json_str.rfind('}')
    if start >= 0 and end > start:
        try:
            result = json.loads(json_str[start:end + 1])
            if isinstance(result, dict) and result:
                return result
        except json.JSONDecodeError:
            pass

    response_preview = json_str[:300]
    raise ValueError(f"Could not parse JSON from LLM response:\n{response_preview}")


def to_number(value: Any) -> Optional[float]:
    """
    Coerce '1,234.50', '1 234,50', '1.234,50', '$150' or 150 to a float.

    When both separators appear the last one is the decimal point. A lone
    comma followed by one or two digits is a decimal comma; any other comma
    groups thousands. Anything unreadable is None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = re.sub(r"[^0-9.,\-]", "", str(value))
    if "," in cleaned and "." in cleaned:
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif "," in cleaned:
        if cleaned.count(",") == 1 and re.search(r",\d{1,2}$", cleaned):
            cleaned = cleaned.replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif cleaned.count(".") > 1:
        cleaned = cleaned.replace(".", "")
    if not cleaned or cleaned in ("-", ".", "-."):
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _pick(data: dict, *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def build_quote_extraction(extracted_data: dict) -> QuoteExtraction:
    """
    Build QuoteExtraction from the model's JSON.
    Accepts camelCase or snake_case keys; bad lines are skipped with a warning.
    """
    if not extracted_data:
        extracted_data = {}

    info_data = _pick(extracted_data, "supplierInfo", "supplier_info") or {}
    if not isinstance(info_data, dict):
        info_data = {}

    supplier_info = SupplierInfo(
        company_name=to_text(_pick(info_data, "companyName", "company_name")),
        quote_number=to_text(_pick(info_data, "quoteNumber", "quote_number")),
        quote_date=to_text(_pick(info_data, "quoteDate", "quote_date")),
        valid_until=to_text(_pick(info_data, "validUntil", "valid_until")),
        subtotal=to_number(info_data.get("subtotal")),
        shipping=to_number(info_data.get("shipping")),
        taxes=to_number(info_data.get("taxes")),
        total=to_number(info_data.get("total")),
    )

    warnings: List[str] = list(extracted_data.get("extraction_warnings") or [])
    items = []
    for index, item_data in enumerate(_pick(extracted_data, "extractedItems", "extracted_items") or []):
        if not isinstance(item_data, dict):
            warnings.append(f"Skipped line {index}: not an object")
            continue
        name = to_text(_pick(item_data, "productName", "product_name")) or ""
        sku = to_text(item_data.get("sku"))
        if not name and not sku:
            warnings.append(f"Skipped line {index}: no product name or SKU")
            continue
        items.append(ExtractedLineItem(
            product_name=name,
            product_name_original=to_text(_pick(item_data, "productNameOriginal", "product_name_original")),
            sku=sku,
            quantity=to_number(item_data.get("quantity")),
            unit_price=to_number(_pick(item_data, "unitPrice", "unit_price")),
            total_price=to_number(_pick(item_data, "totalPrice", "total_price")),
            brand=to_text(item_data.get("brand")),
            description=to_text(item_data.get("description")),
            lead_time=to_text(_pick(item_data, "leadTime", "lead_time")),
        ))

    for warning in warnings:
        logger.warning(f"[DocumentIntelligenceAgent] {warning}")

    return QuoteExtraction(
        supplier_info=supplier_info,
        extracted_items=items,
        notes=to_text(extracted_data.get("notes")),
        extraction_warnings=warnings,
    )


def classify_provider_error(error: Exception, provider: Optional[str] = None) -> QuoteEngineError:
    """Rate limiting becomes TransientError; everything else UpstreamError."""
    provider = provider or config.LLM_PROVIDER
    status = getattr(error, "status_code", None) or getattr(getattr(error, "response", None), "status_code", None)
    text = str(error).lower()

    if status == 429 or "429" in text or "rate limit" in text or "resource exhausted" in text:
        retry_after = getattr(error, "retry_after", None)
        return TransientError(
            "Extraction provider is rate limiting requests",
            provider=provider,
            retry_after=int(retry_after) if retry_after else None,
        )
    return UpstreamError(
        f"Extraction provider failed: {type(error).__name__}",
        provider=provider,
        status_code=status,
    )


def mock_response(requested_items: Sequence[RequestedItem]) -> str:
    """Canned extraction echoing the requested items, for offline use."""
    lines = [
        {
            "productName": item.name,
            "sku": item.sku or item.model_number,
            "quantity": item.quantity,
            "unitPrice": 100.0,
            "totalPrice": round(100.0 * item.quantity, 2),
            "brand": item.brand,
        }
        for item in requested_items
    ]
    subtotal = round(sum(line["totalPrice"] for line in lines), 2)
    return json.dumps({
        "supplierInfo": {"companyName": "Mock Supplier", "quoteNumber": "MOCK-001",
                         "subtotal": subtotal, "total": subtotal},
        "extractedItems": lines,
        "notes": "Mock mode - not real extraction",
    })


def try_llm_extraction(document_text: str, requested_items: Sequence[RequestedItem],
                       model_name: str = None) -> str:
    """Run the extraction prompt against one model and return the raw text."""
    llm = get_llm(model_name)
    prompt = PromptTemplate(
        input_variables=["document_text", "requested_items"],
        template=EXTRACTION_PROMPT_TEMPLATE,
    )
    chain = prompt | llm
    response = chain.invoke({
        "document_text": document_text,
        "requested_items": format_requested_items(requested_items),
    })
    return get_llm_response_text(response)


def extract_quote(document_text: str, requested_items: Sequence[RequestedItem]) -> QuoteExtraction:
    """
    Extract a quote document into structured line items.

    Tries the primary model, then the fallback model. Rate limiting is raised
    straight away so the caller decides when to retry.

    Raises:
        TransientError: provider rate limiting
        UpstreamError: provider failure, missing credentials or unparseable output
    """
    if config.LLM_MOCK_MODE or config.LLM_PROVIDER == "mock":
        logger.info("Mock mode enabled - returning canned extraction")
        return build_quote_extraction(parse_extracted_json(mock_response(requested_items)))

    try:
        config.validate_provider_credentials()
    except ValueError as e:
        raise UpstreamError(str(e), provider=config.LLM_PROVIDER) from e

    last_error: Optional[QuoteEngineError] = None
    models = [config.LLM_MODEL]
    if config.LLM_FALLBACK_MODEL and config.LLM_FALLBACK_MODEL != config.LLM_MODEL:
        models.append(config.LLM_FALLBACK_MODEL)

    for model_name in models:
        try:
            response_text = try_llm_extraction(document_text, requested_items, model_name)
        except Exception as e:
            classified = classify_provider_error(e)
            if isinstance(classified, TransientError):
                raise classified from e
            logger.warning(f"[DocumentIntelligenceAgent] Model {model_name} failed: {type(e).__name__}")
            last_error = classified
            continue

        try:
            extraction = build_quote_extraction(parse_extracted_json(response_text))
        except ValueError:
            logger.warning(f"[DocumentIntelligenceAgent] Model {model_name} returned unparseable output")
            last_error = UpstreamError("Extraction output could not be parsed",
                                       provider=config.LLM_PROVIDER, model=model_name)
            continue

        log_agent_action(
            logger,
            "DocumentIntelligenceAgent",
            "quote_extracted",
            details={"model": model_name, "lines": len(extraction.extracted_items)},
        )
        return extraction

    raise last_error

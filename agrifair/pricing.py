"""Fair-price advisory backed by Gemini.

The model does the pricing; this module only builds the request from the
farmer's costs and validates the JSON that comes back.
"""
import json
import re
from dataclasses import dataclass, asdict

import google.generativeai as genai

QUALITIES = ("Low", "Medium", "High", "Premium")
LANGUAGES = {"en": "English", "hi": "Hindi", "kn": "Kannada"}
COST_FIELDS = ("seedCost", "fertilizerCost", "labourCost", "maintenanceCost", "otherCost")

RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "fairPrice": {"type": "NUMBER"},
        "marketComparison": {"type": "NUMBER"},
        "explanation": {"type": "STRING"},
        "breakdown": {
            "type": "OBJECT",
            "properties": {
                "baseCost": {"type": "NUMBER"},
                "profitMargin": {"type": "NUMBER"},
                "riskPremium": {"type": "NUMBER"},
            },
            "required": ["baseCost", "profitMargin", "riskPremium"],
        },
        "recommendation": {"type": "STRING"},
    },
    "required": ["fairPrice", "marketComparison", "explanation", "breakdown", "recommendation"],
}


class PricingError(Exception):
    def __init__(self, message, status=502):
        super().__init__(message)
        self.message = message
        self.status = status


@dataclass
class CropInput:
    cropName: str
    quantity: float
    unit: str
    quality: str
    region: str
    seedCost: float
    fertilizerCost: float
    labourCost: float
    maintenanceCost: float
    otherCost: float
    marketRate: float

    @classmethod
    def from_dict(cls, data):
        """Validate form input. Raises ValueError with a user-facing message."""
        data = data or {}
        crop = str(data.get("cropName") or "").strip()
        if not crop:
            raise ValueError("cropName required")
        quality = data.get("quality") or "Medium"
        if quality not in QUALITIES:
            raise ValueError(f"quality must be one of {', '.join(QUALITIES)}")

        numbers = {}
        for field in ("quantity", "marketRate") + COST_FIELDS:
            raw = data.get(field, 0 if field in COST_FIELDS else None)
            if raw is None or raw == "":
                raise ValueError(f"{field} required")
            try:
                value = float(raw)
            except (TypeError, ValueError):
                raise ValueError(f"{field} must be a number")
            if value < 0:
                raise ValueError(f"{field} cannot be negative")
            numbers[field] = value
        if numbers["quantity"] <= 0:
            raise ValueError("quantity must be greater than zero")

        return cls(
            cropName=crop,
            unit=str(data.get("unit") or "kg"),
            quality=quality,
            region=str(data.get("region") or "").strip(),
            **numbers,
        )

    def to_dict(self):
        return asdict(self)


def total_cost(crop):
    return sum(getattr(crop, f) for f in COST_FIELDS)


def _fmt(n):
    return str(int(n)) if float(n).is_integer() else str(n)


def build_prompt(crop, language="en"):
    lang = LANGUAGES.get(language, language)
    return f"""
You are an expert agricultural economist devoted to fair trade for farmers.
Calculate a fair price for the following crop, ensuring the farmer gets a significant benefit.
Consider hidden costs, inflation, and a living wage margin.

Input Data:
- Crop: {crop.cropName}
- Quantity: {_fmt(crop.quantity)} {crop.unit}
- Quality: {crop.quality}
- Region: {crop.region}

Cost Breakdown:
- Seed Cost: {_fmt(crop.seedCost)}
- Fertilizer/Pesticide Cost: {_fmt(crop.fertilizerCost)}
- Labour Cost: {_fmt(crop.labourCost)}
- Maintenance Cost: {_fmt(crop.maintenanceCost)}
- Other (Transport/Storage): {_fmt(crop.otherCost)}
---------------------------
- Total Cultivation Cost: {_fmt(total_cost(crop))}

- Current Market Offer: {_fmt(crop.marketRate)}

Your goal is to justify a higher price if the market rate is unfair.

Output strictly in JSON format matching this schema:
{{
  "fairPrice": number (recommended total fair amount for the total quantity),
  "marketComparison": number (percentage difference from the market offer, e.g. 15 for 15% higher),
  "explanation": string (short paragraph explaining why this price is fair, in {lang}),
  "breakdown": {{
    "baseCost": number (cost coverage),
    "profitMargin": number (pure profit for the farmer),
    "riskPremium": number (buffer for weather/market risks)
  }},
  "recommendation": string (actionable advice for the farmer, in {lang})
}}
"""


def _number(obj, key, where="response"):
    value = obj.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PricingError(f"AI {where} is missing a numeric '{key}'")
    return float(value)


def _text(obj, key):
    value = obj.get(key)
    if not isinstance(value, str) or not value.strip():
        raise PricingError(f"AI response is missing '{key}'")
    return value.strip()


def _strip_fence(text):
    cleaned = (text or "").strip()
    # only a fence wrapping the whole payload; backticks inside strings stay
    m = re.match(r"^```[a-zA-Z]*\s*\n?(.*?)\n?\s*```$", cleaned, re.DOTALL)
    return m.group(1).strip() if m else cleaned


def parse_price_result(text):
    cleaned = _strip_fence(text)
    if not cleaned:
        raise PricingError("The AI model failed to generate a response.")
    try:
        data = json.loads(cleaned)
    except ValueError:
        raise PricingError("The AI model returned malformed JSON.")
    if not isinstance(data, dict):
        raise PricingError("The AI model returned an unexpected response.")

    breakdown = data.get("breakdown")
    if not isinstance(breakdown, dict):
        raise PricingError("AI response is missing 'breakdown'")
    return {
        "fairPrice": _number(data, "fairPrice"),
        "marketComparison": _number(data, "marketComparison"),
        "explanation": _text(data, "explanation"),
        "breakdown": {
            "baseCost": _number(breakdown, "baseCost", "breakdown"),
            "profitMargin": _number(breakdown, "profitMargin", "breakdown"),
            "riskPremium": _number(breakdown, "riskPremium", "breakdown"),
        },
        "recommendation": _text(data, "recommendation"),
    }


class PricingClient:
    def __init__(self, api_key, model_name="gemini-2.0-flash", model=None):
        self.api_key = api_key
        self.model_name = model_name
        self._model = model

    @property
    def configured(self):
        return self._model is not None or bool(self.api_key)

    def model(self):
        if self._model is None:
            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(self.model_name)
            print(f"[AI] Gemini configured with {self.model_name}")
        return self._model

    def calculate_fair_price(self, crop, language="en"):
        if not self.configured:
            raise PricingError(
                "API Key is missing. Set GEMINI_API_KEY in the environment and restart the server.",
                status=503,
            )

        prompt = build_prompt(crop, language)
        config = genai.GenerationConfig(
            response_mime_type="application/json",
            response_schema=RESPONSE_SCHEMA,
        )
        try:
            response = self.model().generate_content(prompt, generation_config=config)
            text = response.text
        except Exception as e:
            print("[AI] Gemini API Error:", e)
            msg = str(e)
            if "API_KEY_INVALID" in msg or "API key not valid" in msg:
                raise PricingError("Invalid API Key. Please verify GEMINI_API_KEY.")
            raise PricingError(msg or "An unexpected error occurred during calculation.")

        return parse_price_result(text)

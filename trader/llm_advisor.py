"""
Language-model decision advisor using Claude.

Sends the market, signal summary and factor breakdown to Claude and asks for
a trade proposal. The response is treated as untrusted: it is parsed,
validated field by field and clamped. Anything malformed yields None so the
decision engine keeps its rule-based decision.
"""

import json
import logging
from typing import Any, Optional

import requests
from requests.exceptions import RequestException, Timeout, ConnectionError

from trader.config import Config
from trader.errors import DecisionServiceError
from trader.models import ACTION_BUY, ACTION_HOLD, ACTION_SELL
from trader.utils import safe_json_loads

# Configure module logger
logger = logging.getLogger(__name__)

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ALLOWED_ACTIONS = (ACTION_BUY, ACTION_SELL, ACTION_HOLD)


class LLMAdvisor:
    """
    Client for the Claude Messages API that proposes trade refinements.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_amount: Optional[float] = None
    ):
        """
        Initialize the advisor.

        Args:
            api_key: Anthropic API key. If None, uses Config.ANTHROPIC_API_KEY
            model: Claude model name. If None, uses Config.CLAUDE_MODEL
            timeout: Request timeout in seconds. If None, uses Config.API_TIMEOUT
            max_amount: Upper clamp for proposed amounts. If None, uses Config.MAX_SINGLE_TRADE
        """
        self.api_key = api_key if api_key is not None else Config.ANTHROPIC_API_KEY
        self.model = model or Config.CLAUDE_MODEL
        self.timeout = timeout or Config.API_TIMEOUT
        self.max_amount = max_amount if max_amount is not None else Config.MAX_SINGLE_TRADE

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def propose(self, context: dict[str, Any]) -> Optional[dict[str, Any]]:
        """
        Ask Claude for a trade proposal.

        Args:
            context: Market, signals, factor breakdown, rule decision and
                eligible outcomes (see build_prompt)

        Returns:
            Validated proposal with keys action, outcome, confidence, amount
            and rationale, or None if the service is unavailable or the
            response is unusable
        """
        if not self.available:
            logger.debug("ANTHROPIC_API_KEY not configured, skipping decision refinement")
            return None

        market_id = context.get("market", {}).get("id", "<unknown>")
        try:
            response_text = self._call_claude_api(build_prompt(context))
        except DecisionServiceError as e:
            logger.warning(f"Decision service unavailable for market {market_id}: {e}")
            return None

        proposal = parse_proposal(response_text, self.max_amount)
        if proposal is None:
            logger.warning(f"Discarding malformed decision response for market {market_id}")
        return proposal

    def _call_claude_api(self, prompt: str) -> str:
        """
        Raises:
            DecisionServiceError: On transport errors or a response without text
        """
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "max_tokens": Config.CLAUDE_MAX_TOKENS,
            "temperature": Config.CLAUDE_TEMPERATURE,
            "messages": [{"role": "user", "content": prompt}],
        }

        try:
            logger.debug(f"Calling Claude API with model {self.model}")
            response = requests.post(
                ANTHROPIC_MESSAGES_URL,
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()

            for block in data.get("content") or []:
                if isinstance(block, dict) and block.get("type", "text") == "text" and "text" in block:
                    return block["text"]

            logger.debug(f"Response data: {json.dumps(data)[:500]}")
            raise DecisionServiceError("Unexpected Claude API response structure")

        except Timeout:
            raise DecisionServiceError(f"Claude API request timed out after {self.timeout}s")

        except ConnectionError as e:
            raise DecisionServiceError(f"Connection error calling Claude API: {e}")

        except RequestException as e:
            logger.error(f"Claude API request failed: {e}")
            if getattr(e, "response", None) is not None:
                logger.error(f"Response status: {e.response.status_code}")
                logger.error(f"Response text: {e.response.text[:500]}")
            raise DecisionServiceError(f"Claude API request failed: {e}")

        except ValueError as e:
            raise DecisionServiceError(f"Claude API returned invalid JSON: {e}")


def build_prompt(context: dict[str, Any]) -> str:
    """
    Render the decision prompt.

    Expected context keys: market (dict), signals (dict), factors (dict),
    rule_decision (dict), eligible_outcomes (list), max_amount (float).
    """
    market = context.get("market", {})
    outcomes = market.get("outcomes", [])
    prices = market.get("outcome_prices", [])
    outcome_lines = "\n".join(
        f"  - {label}: {price:.3f}" for label, price in zip(outcomes, prices)
    ) or "  (no prices)"

    signal_lines = "\n".join(
        f"  - {name}: sentiment {sig.get('sentiment', 0):+.2f}, confidence {sig.get('confidence', 0):.2f}"
        f"{' (unavailable)' if sig.get('degraded') else ''}"
        for name, sig in context.get("signals", {}).items()
    )
    factor_lines = "\n".join(
        f"  - {name}: {value:.3f}" for name, value in context.get("factors", {}).items()
    )
    rule = context.get("rule_decision", {})
    eligible = ", ".join(context.get("eligible_outcomes", [])) or "none"

    return f"""You are a disciplined prediction market trader. Review the analysis below and propose a single trade action.

MARKET:
Question: {market.get('question', '')}
Current Price: {market.get('price', 0):.3f}
Liquidity: ${market.get('liquidity', 0):,.0f}
24h Volume: ${market.get('volume_24h', 0):,.0f}
Spread: {market.get('spread', 0):.3f}
Hours to Close: {market.get('hours_to_close', 0):.1f}
Outcomes:
{outcome_lines}

SIGNALS:
{signal_lines}

SCORING FACTORS (0-1):
{factor_lines}

RULE-BASED DECISION:
  action={rule.get('action')}, outcome={rule.get('outcome')}, confidence={rule.get('confidence')}, amount={rule.get('position_size')}, strategy={rule.get('strategy')}

RULES:
- action must be one of BUY, SELL, HOLD
- outcome must be one of: {eligible}
- confidence is an integer from 0 to 100
- amount is in USD and must not exceed {context.get('max_amount', 0):.2f}
- Prefer HOLD when signals are weak or contradictory

Return ONLY valid JSON (no markdown, no explanatory text):

{{"action": "BUY", "outcome": "Yes", "confidence": 75, "amount": 25.0, "rationale": "Brief reasoning (max 100 words)"}}"""


def parse_proposal(response_text: str, max_amount: float) -> Optional[dict[str, Any]]:
    """
    Parse and validate a proposal from raw model output.

    Every required field must be present and well-typed; numeric fields are
    clamped (confidence to 0-100, amount to 0-max_amount).

    Returns:
        Validated proposal dictionary, or None
    """
    data = safe_json_loads(response_text)
    if not isinstance(data, dict):
        logger.debug(f"Decision response is not a JSON object: {str(response_text)[:200]}")
        return None

    for field in ("action", "confidence"):
        if field not in data:
            logger.warning(f"Missing required field '{field}' in decision response")
            return None

    action = str(data["action"]).strip().upper()
    if action not in ALLOWED_ACTIONS:
        logger.warning(f"Invalid action '{data['action']}' in decision response")
        return None

    try:
        confidence = float(data["confidence"])
        amount = float(data.get("amount", 0) or 0)
    except (TypeError, ValueError):
        logger.warning("Non-numeric confidence or amount in decision response")
        return None

    if confidence != confidence or amount != amount:
        logger.warning("NaN confidence or amount in decision response")
        return None

    outcome = data.get("outcome")
    if outcome is not None and not isinstance(outcome, str):
        logger.warning("outcome must be a string")
        return None

    rationale = data.get("rationale", "")
    if not isinstance(rationale, str):
        rationale = str(rationale)

    return {
        "action": action,
        "outcome": outcome.strip() if isinstance(outcome, str) else None,
        "confidence": int(round(max(0.0, min(100.0, confidence)))),
        "amount": max(0.0, min(float(max_amount), amount)),
        "rationale": rationale.strip()[:500],
    }

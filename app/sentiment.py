"""
Customer sentiment for ticket analysis.

Uses a pre-trained transformer sentiment classifier; P(negative) is mapped to a
label (positive / neutral / negative / frustrated). A regex baseline is used when the
transformer is disabled or cannot be loaded.
"""

import logging
import re

from app.config import USE_TRANSFORMER_SENTIMENT
from app.models import Sentiment

logger = logging.getLogger(__name__)

# Lazy-loaded model and tokenizer
_model = None
_tokenizer = None
_model_failed = False

# Default: DistilBERT fine-tuned on SST-2 (binary sentiment)
DEFAULT_MODEL = "distilbert-base-uncased-finetuned-sst-2-english"

FRUSTRATED_RE = re.compile(
    r"\b(?:frustrat\w*|ridiculous|unacceptable|furious|angry|fed up|worst|again and again|still not)\b|!{2,}",
    re.IGNORECASE,
)
NEGATIVE_RE = re.compile(
    r"\b(?:problem|issue|broken|fail\w*|wrong|bad|cannot|can't|unable|error|disappointed|annoy\w*)\b",
    re.IGNORECASE,
)
POSITIVE_RE = re.compile(
    r"\b(?:thanks?|thank you|great|love|awesome|appreciate\w*|excellent|happy)\b",
    re.IGNORECASE,
)


def _get_model(model_name: str = DEFAULT_MODEL):
    global _model, _tokenizer
    if _model is None:
        from transformers import AutoModelForSequenceClassification, AutoTokenizer

        _tokenizer = AutoTokenizer.from_pretrained(model_name)
        _model = AutoModelForSequenceClassification.from_pretrained(model_name)
        _model.eval()
    return _model, _tokenizer


def negative_probability(text: str, model_name: str = DEFAULT_MODEL, max_length: int = 512) -> float:
    """P(negative) in [0, 1] from the transformer. Empty text scores 0."""
    if not text or not text.strip():
        return 0.0
    import torch

    model, tokenizer = _get_model(model_name)
    inputs = tokenizer(
        text.strip(),
        return_tensors="pt",
        truncation=True,
        max_length=max_length,
        padding=True,
    )
    with torch.no_grad():
        logits = model(**inputs).logits

    # SST-2: index 0 = negative, 1 = positive
    probs = torch.softmax(logits, dim=-1).squeeze()
    if probs.dim() == 0:
        probs = probs.unsqueeze(0)
    return round(min(1.0, max(0.0, float(probs[0].item()))), 4)


def baseline_sentiment(text: str) -> Sentiment:
    """Regex sentiment: frustration beats negativity beats positivity."""
    if not text or not text.strip():
        return Sentiment.NEUTRAL
    if FRUSTRATED_RE.search(text):
        return Sentiment.FRUSTRATED
    if NEGATIVE_RE.search(text):
        return Sentiment.NEGATIVE
    if POSITIVE_RE.search(text):
        return Sentiment.POSITIVE
    return Sentiment.NEUTRAL


def label_from_negative_probability(p_negative: float, text: str) -> Sentiment:
    if p_negative >= 0.9 and FRUSTRATED_RE.search(text):
        return Sentiment.FRUSTRATED
    if p_negative >= 0.6:
        return Sentiment.NEGATIVE
    if p_negative <= 0.2:
        return Sentiment.POSITIVE
    return Sentiment.NEUTRAL


def warm_up() -> bool:
    """Load the transformer ahead of the first ticket. False if disabled or unavailable."""
    global _model_failed
    if not USE_TRANSFORMER_SENTIMENT or _model_failed:
        return False
    try:
        _get_model()
    except Exception as e:
        _model_failed = True
        logger.warning("Sentiment model unavailable (%s); using regex baseline.", e)
        return False
    logger.info("Sentiment model %s loaded.", DEFAULT_MODEL)
    return True


def classify_sentiment(text: str) -> Sentiment:
    """Transformer sentiment when enabled and loadable; regex baseline otherwise."""
    global _model_failed
    if not USE_TRANSFORMER_SENTIMENT or _model_failed:
        return baseline_sentiment(text)
    try:
        p_negative = negative_probability(text)
    except Exception as e:
        _model_failed = True
        logger.warning("Sentiment model unavailable (%s); using regex baseline.", e)
        return baseline_sentiment(text)
    return label_from_negative_probability(p_negative, text)

"""
Keyword taxonomy used to classify, tag and score incoming articles.

Structure:
- Category keyword lists: ordered; the first category wins a scoring tie
- Tag keywords: a broader vocabulary matched as whole words
- High-value phrases and reputable sources: used by the ingestion scorer

The lists are intentionally plain string matching. Thresholds downstream
depend on their exact contents, so edit with care.
"""

from dataclasses import dataclass
from typing import Iterator


@dataclass(frozen=True)
class CategoryKeywords:
    """A category and the phrases that vote for it."""

    id: str
    keywords: tuple[str, ...]


CATEGORY_KEYWORDS: tuple[CategoryKeywords, ...] = (
    # AI categories
    CategoryKeywords(
        id="artificial_intelligence",
        keywords=(
            "artificial intelligence", "ai ", "ai-", "ai,", "ai.", "ai:", "ai;", 'ai"', "ai'",
            "intelligent systems", "ai assistant", "ai model", "ai technology", "cognitive computing",
            "ai research", "artificial intelligence", "superintelligence", "ai agent", "ai system",
            "artificial general intelligence", "ai development", "ai capabilities",
        ),
    ),
    CategoryKeywords(
        id="machine_learning",
        keywords=(
            "machine learning", "ml ", "ml-", "ml,", "ml.", "deep learning", "neural network",
            "training model", "supervised learning", "unsupervised learning", "reinforcement learning",
            "ml algorithm", "predictive model", "computer vision", "transformer architecture",
            "model training", "feature extraction", "classification algorithm", "clustering algorithm",
        ),
    ),
    CategoryKeywords(
        id="llm",
        keywords=(
            "llm", "large language model", "chatgpt", "gpt-4", "gpt4", "gpt-5", "gpt5", "language model",
            "text generation", "openai", "claude", "gemini", "bard", "transformer model", "llama",
            "palm", "text-to-text", "natural language processing", "nlp", "foundation model",
            "parameter", "mistral", "anthropic", "falcon", "text-davinci", "language understanding",
        ),
    ),
    CategoryKeywords(
        id="generative_ai",
        keywords=(
            "generative ai", "gen ai", "text-to-image", "text to image", "diffusion model",
            "stable diffusion", "midjourney", "dall-e", "dalle", "image generation",
            "ai art", "ai-generated", "prompt engineering", "text to speech", "voice synthesis",
            "deepfake", "synthetic data", "generative model", "ai content generation",
            "ai image generator", "ai creative tools", "synthetic media",
        ),
    ),
    CategoryKeywords(
        id="ai_ethics",
        keywords=(
            "ai ethics", "algorithm bias", "ethical ai", "ai regulation", "responsible ai",
            "explainable ai", "xai", "transparent ai", "ai safety", "ai alignment", "ai governance",
            "algorithmic fairness", "ai accountability", "ai transparency", "ai policy",
            "ai legislation", "facial recognition ethics", "ai discrimination", "ai bias",
        ),
    ),
    CategoryKeywords(
        id="ai_research",
        keywords=(
            "ai research", "ai paper", "ai breakthrough", "ai advancement", "ai lab",
            "ai development", "ai progress", "ai innovation", "ai science", "ai study",
            "ai experiment", "ai conference", "ai journal", "ai publication", "neurips",
            "icml", "ai research lab", "ai technique", "ml research", "ai researcher",
        ),
    ),
    # Standard categories
    CategoryKeywords(
        id="web3",
        keywords=(
            "web3", "blockchain", "bitcoin", "ethereum", "cryptocurrency", "crypto",
            "nft", "defi", "smart contract", "token", "decentralized", "ico", "dao",
            "web 3.0", "crypto wallet", "digital ledger", "mining", "staking", "altcoin",
        ),
    ),
    CategoryKeywords(
        id="stocks",
        keywords=(
            "stock", "market", "investment", "trading", "nasdaq", "dow jones", "sp500", "sp 500",
            "bull", "bear", "dividend", "earnings", "portfolio", "investor", "etf", "ipo",
            "securities", "equity", "shares", "nyse", "ticker", "stock price",
        ),
    ),
    CategoryKeywords(
        id="technology",
        keywords=(
            "tech", "software", "app", "startup", "innovation", "digital", "computer", "cloud",
            "iot", "automation", "5g", "devices", "semiconductor", "hardware", "cybersecurity",
            "programming", "web development", "saas", "silicon valley", "tech company",
        ),
    ),
    CategoryKeywords(
        id="business",
        keywords=(
            "business", "company", "corporate", "industry", "firm", "revenue",
            "ceo", "executive", "profit", "enterprise", "merger", "acquisition",
            "startup", "entrepreneur", "cfo", "board", "commercial", "retail",
        ),
    ),
    CategoryKeywords(
        id="science",
        keywords=(
            "science", "research", "study", "discovery", "scientist", "physics",
            "chemistry", "biology", "space", "nasa", "experiment", "breakthrough",
            "laboratory", "quantum", "scientific", "astronomy", "particle", "genome",
        ),
    ),
    CategoryKeywords(
        id="health",
        keywords=(
            "health", "medical", "disease", "treatment", "patient", "doctor",
            "hospital", "medicine", "vaccine", "healthcare", "therapy", "wellness",
            "clinical", "diagnosis", "pharmaceutical", "surgery", "pandemic", "diet",
        ),
    ),
)

TAG_KEYWORDS: tuple[str, ...] = (
    # AI/ML
    "artificial intelligence", "ai", "machine learning", "deep learning", "neural network",
    "large language model", "llm", "chatgpt", "gpt-4", "openai", "nlp", "computer vision",
    "generative ai", "stable diffusion", "midjourney", "dalle", "ai ethics", "ai research",
    "transformer", "foundation model", "reinforcement learning", "diffusion model",
    "prompt engineering", "agi", "ai alignment", "ai safety", "ai agent", "ai system",
    "mistral ai", "anthropic", "gemini", "claude", "multimodal", "vision model",
    # Web3/Crypto/Blockchain
    "blockchain", "web3", "bitcoin", "ethereum", "cryptocurrency", "crypto",
    "nft", "defi", "metaverse", "token", "wallet", "mining", "smart contract",
    "dao", "decentralized", "ledger", "web 3", "staking", "solana", "cardano",
    # Stocks/Finance
    "stocks", "trading", "market", "finance", "investment", "investor",
    "portfolio", "earnings", "dividend", "nasdaq", "dow", "nyse",
    "bull", "bear", "hedge fund", "etf", "ipo", "securities", "shares",
    "stock market", "financial", "wall street", "sp500", "treasury", "bond",
    # Technology
    "technology", "software", "startup", "innovation", "digital", "app", "mobile", "data", "cloud", "saas",
    "robotics", "automation", "cybersecurity", "5g", "internet of things", "iot", "tech",
    "programming", "code", "developer", "cyber", "computing", "hardware",
    # Business
    "business", "company", "ceo", "entrepreneur", "industry",
    "acquisition", "merger", "revenue", "profit", "funding", "venture capital",
    "corporate", "enterprise", "retail", "ecommerce", "commercial", "b2b", "cfo",
)

# Title vocabulary for the CryptoPanic and RSS crawler adapters
CRYPTO_TAG_KEYWORDS: tuple[str, ...] = (
    "bitcoin", "ethereum", "crypto", "blockchain", "token", "wallet", "exchange",
    "mining", "defi", "nft", "altcoin", "staking", "regulation", "trading",
)

# Title + content vocabulary for extracted (FireCrawl) stories
MARKET_TAG_KEYWORDS: tuple[str, ...] = (
    "bitcoin", "btc", "ethereum", "eth", "solana", "sol",
    "xrp", "ripple", "ton", "defi", "nft", "crypto",
    "blockchain", "token", "market", "trading", "price",
    "bullish", "bearish", "altcoin",
)

SYMBOL_STOPWORDS: frozenset[str] = frozenset({"USD", "EUR", "GBP", "JPY", "THE", "AND", "FOR"})

HIGH_VALUE_TERMS: tuple[str, ...] = (
    "artificial intelligence breakthrough", "llm advancement", "ai research",
    "machine learning innovation", "gpt-4", "gpt-5", "ai alignment", "ai safety",
    "ai regulation", "foundation models", "multimodal ai", "ai acquisition",
    "ai partnership", "ai legislation", "ai ethics", "llm capabilities",
    "ai investment", "neural network breakthrough", "ai startup funding",
)

REPUTABLE_SOURCES: tuple[str, ...] = (
    "bloomberg", "reuters", "financial times", "wall street journal", "techcrunch", "bbc",
)

# Categories the read API accepts; "crypto" is produced by the crypto adapters
CATEGORIES: tuple[str, ...] = (
    "business", "technology", "science", "health", "stocks", "web3", "crypto",
    "artificial_intelligence", "machine_learning", "llm", "generative_ai",
    "ai_ethics", "ai_research", "general",
)

DEFAULT_CATEGORY = "general"


def iter_categories() -> Iterator[CategoryKeywords]:
    """Iterate category keyword lists in tie-break order."""
    yield from CATEGORY_KEYWORDS


def is_known_category(category: str | None) -> bool:
    return category in CATEGORIES

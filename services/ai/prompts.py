"""Prompt text sent to Gemini. User-facing output is Japanese."""

from typing import Sequence

ICON_PROMPT = """Create a high-quality, modern, minimalist 3D circular app icon for the US stock ticker "{ticker}".
The design should reflect the company's industry or brand colors.
Keep it clean and recognisable at small sizes. White background."""

RECEIPT_PROMPT = """This image is a screenshot of a stock purchase or trade confirmation.
Extract the ticker symbol (e.g. AAPL, TSLA), the number of shares bought and the price per share.
If the company name is visible, extract it too.
Leave out any field you cannot read. Return JSON only."""

NEWS_PROMPT = """Find the latest significant financial news for these US stocks: {tickers}.
Identify the top {limit} distinct news stories.
Output each story strictly as "HEADLINE :: SUMMARY".
Separate stories with "|||".
Do not add numbering, bullet points or markdown formatting.
Write in Japanese."""

_SNAPSHOT_JSON_RULES = """Return the result strictly as one valid JSON object, without markdown code blocks.
The JSON structure must be:
{
  "prices": { "TICKER_SYMBOL": PRICE_NUMBER },
  "usdJpy": EXCHANGE_RATE_NUMBER
}
If no stock prices are requested or found, return an empty object for "prices"."""

CHAT_SYSTEM_PROMPT = """あなたはシニア金融アナリストのアシスタントです。
ユーザーは米国株のポートフォリオを保有しています。
現在の保有銘柄(JSON): {portfolio}

現在のUSD/JPYレートは 1ドル = {usd_jpy}円 です。
評価額や損益を説明するときは、必要に応じてこのレートで円換算した数値も示してください。

保有銘柄に関する質問への回答、損益の計算、分析を行ってください。
現在の株価を聞かれた場合は、JSONの価格をスナップショットとして扱い、リアルタイムの株価ではないことを明示してください。

回答は常に日本語で、簡潔かつ専門的に行ってください。"""


def icon_prompt(ticker: str) -> str:
    return ICON_PROMPT.format(ticker=ticker)


def news_prompt(tickers: Sequence[str], limit: int) -> str:
    return NEWS_PROMPT.format(tickers=", ".join(tickers), limit=limit)


def snapshot_prompt(tickers: Sequence[str]) -> str:
    if tickers:
        ask = (
            "Find the latest market price (real-time or delayed by 15 minutes) for these US stock tickers: "
            f"{', '.join(tickers)}.\nAlso find the current USD to JPY exchange rate."
        )
    else:
        ask = "Find the current USD to JPY exchange rate."
    return f"{ask}\n{_SNAPSHOT_JSON_RULES}"


def chat_system_prompt(portfolio_context: str, usd_jpy: float) -> str:
    return CHAT_SYSTEM_PROMPT.format(portfolio=portfolio_context, usd_jpy=usd_jpy)

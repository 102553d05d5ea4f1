from schemas.asset import TradeDraft, TradeFields


def apply_trade_fields(draft: TradeDraft, fields: TradeFields) -> TradeDraft:
    """Overlay the extracted fields on the draft; anything not extracted keeps the user's value."""
    update = {}
    if fields.ticker is not None:
        update["ticker"] = fields.ticker
    if fields.company_name is not None:
        update["company_name"] = fields.company_name
    if fields.quantity is not None:
        update["quantity"] = fields.quantity
    if fields.avg_price is not None:
        update["avg_price"] = fields.avg_price
    return draft.model_copy(update=update)

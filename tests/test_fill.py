from soltrader.core.fill import reconcile_fill, wallet_mint_deltas
from soltrader.data.models import FillSource, ParsedTransaction, Quote, TokenBalance

WALLET = "Wa11et1111111111111111111111111111111111111"
POOL = "Poo11111111111111111111111111111111111111111"
USDC = "USDC"
SOL = "SOL"
TOK = "TOK"

def make_quote(input_mint, output_mint, in_amount, out_amount, in_dec=6, out_dec=6):
    return Quote(
        input_mint=input_mint, output_mint=output_mint, in_amount=in_amount, out_amount=out_amount,
        input_decimals=in_dec, output_decimals=out_dec, price_impact_pct=0.1, route_plan=[],
        slippage_bps=300,
    )

def tx(pre_tokens, post_tokens, pre=None, post=None, fee=5000, keys=None):
    return ParsedTransaction(
        signature="sig", account_keys=keys if keys is not None else [WALLET, POOL],
        fee=fee, err=None,
        pre_balances=pre or [0, 0], post_balances=post or [0, 0],
        pre_token_balances=pre_tokens, post_token_balances=post_tokens,
    )

def test_deltas_keyed_by_account_index_and_owner():
    pre = [
        TokenBalance(2, USDC, WALLET, 300),
        TokenBalance(3, USDC, WALLET, 50),
        TokenBalance(4, USDC, POOL, 1_000),
    ]
    post = [
        TokenBalance(2, USDC, WALLET, 200),
        TokenBalance(3, USDC, WALLET, 40),
        TokenBalance(4, USDC, POOL, 1_110),
        TokenBalance(5, TOK, WALLET, 77),
    ]
    deltas = wallet_mint_deltas(pre, post, WALLET)
    # two wallet accounts for the same mint are summed, the pool is ignored
    assert deltas == {USDC: -110, TOK: 77}

def test_entries_without_owner_are_skipped():
    deltas = wallet_mint_deltas([], [TokenBalance(2, TOK, None, 10)], WALLET)
    assert deltas == {}

def test_buy_fill_uses_absolute_onchain_deltas():
    q = make_quote(USDC, TOK, 100_000_000, 96_000_000)
    t = tx(
        pre_tokens=[TokenBalance(2, USDC, WALLET, 200_000_000), TokenBalance(4, USDC, POOL, 5_000_000_000)],
        post_tokens=[TokenBalance(2, USDC, WALLET, 100_000_000), TokenBalance(3, TOK, WALLET, 95_000_000),
                     TokenBalance(4, USDC, POOL, 5_100_000_000)],
    )
    fill = reconcile_fill(t, q, WALLET, True, USDC, 6, SOL, 9)
    assert fill.source == FillSource.ONCHAIN
    assert fill.usdc_amount == 100.0
    assert fill.token_amount == 95.0
    assert fill.token_amount_raw == 95_000_000
    assert fill.fee == 5000 / 1e9

def test_missing_post_entries_fall_back_to_quote():
    q = make_quote(USDC, TOK, 100_000_000, 96_000_000)
    t = tx(pre_tokens=[TokenBalance(4, USDC, POOL, 10)], post_tokens=[TokenBalance(4, USDC, POOL, 20)])
    fill = reconcile_fill(t, q, WALLET, True, USDC, 6, SOL, 9)
    assert fill.source == FillSource.QUOTE_FALLBACK
    assert fill.usdc_amount == 100.0
    assert fill.token_amount == 96.0

def test_no_transaction_is_quote_fallback():
    q = make_quote(TOK, USDC, 50_000_000, 55_000_000)
    fill = reconcile_fill(None, q, WALLET, False, USDC, 6, SOL, 9)
    assert fill.source == FillSource.QUOTE_FALLBACK
    assert fill.usdc_amount == 55.0
    assert fill.token_amount_raw == 50_000_000
    assert fill.fee == 0.0

def test_one_leg_only_is_not_verified():
    q = make_quote(USDC, TOK, 100_000_000, 96_000_000)
    t = tx(pre_tokens=[TokenBalance(2, USDC, WALLET, 200_000_000)],
           post_tokens=[TokenBalance(2, USDC, WALLET, 100_000_000)])
    fill = reconcile_fill(t, q, WALLET, True, USDC, 6, SOL, 9)
    assert fill.source == FillSource.QUOTE_FALLBACK
    assert fill.usdc_amount == 100.0      # measured leg still applied
    assert fill.token_amount == 96.0      # quoted leg kept

def test_native_buy_leg_from_lamports_net_of_fee():
    # bought 0.5 SOL, paid 5000 lamports fee out of the same balance
    q = make_quote(USDC, SOL, 80_000_000, 510_000_000, out_dec=9)
    t = tx(
        pre_tokens=[TokenBalance(2, USDC, WALLET, 100_000_000)],
        post_tokens=[TokenBalance(2, USDC, WALLET, 20_000_000)],
        pre=[1_000_000_000, 0], post=[1_000_000_000 + 500_000_000 - 5000, 0],
    )
    fill = reconcile_fill(t, q, WALLET, True, USDC, 6, SOL, 9)
    assert fill.source == FillSource.ONCHAIN
    assert fill.token_amount_raw == 500_000_000
    assert fill.token_amount == 0.5
    assert fill.usdc_amount == 80.0

def test_native_sell_leg_from_lamports_net_of_fee():
    q = make_quote(SOL, USDC, 500_000_000, 80_000_000, in_dec=9)
    t = tx(
        pre_tokens=[TokenBalance(2, USDC, WALLET, 0)],
        post_tokens=[TokenBalance(2, USDC, WALLET, 79_500_000)],
        pre=[2_000_000_000, 0], post=[2_000_000_000 - 500_000_000 - 5000, 0],
    )
    fill = reconcile_fill(t, q, WALLET, False, USDC, 6, SOL, 9)
    assert fill.source == FillSource.ONCHAIN
    assert fill.token_amount_raw == 500_000_000
    assert fill.usdc_amount == 79.5

def test_fee_ignored_when_wallet_not_in_keys():
    q = make_quote(USDC, TOK, 100_000_000, 96_000_000)
    t = tx(pre_tokens=[], post_tokens=[], keys=[POOL])
    fill = reconcile_fill(t, q, WALLET, True, USDC, 6, SOL, 9)
    assert fill.fee == 0.0

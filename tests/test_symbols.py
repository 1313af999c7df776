import pytest

from paperdesk.exchanges import binance, bybit, coinbase
from paperdesk.symbols import ConcatSymbolMapper, DashSymbolMapper


@pytest.mark.parametrize('native, canonical', [
    ('BTCUSDT', 'BTC-USDT'),
    ('ethbtc', 'ETH-BTC'),
    ('BTCFDUSD', 'BTC-FDUSD'),
    ('SOLUSDC', 'SOL-USDC'),
])
def test_concat_mapper(native, canonical):
    mapper = ConcatSymbolMapper()
    assert mapper.from_exchange(native) == canonical
    assert mapper.to_exchange(canonical) == native.upper()


def test_unknown_quote_comes_back_unchanged():
    assert ConcatSymbolMapper().from_exchange('FOOBAR') == 'FOOBAR'
    # a bare quote asset is not split into an empty base
    assert ConcatSymbolMapper().from_exchange('USDT') == 'USDT'


def test_dash_mapper_is_identity():
    mapper = DashSymbolMapper()
    assert mapper.to_exchange('BTC-USD') == 'BTC-USD'
    assert mapper.from_exchange('BTC-USD') == 'BTC-USD'


def test_binance_instruments_round_trip():
    mapper = ConcatSymbolMapper()
    instruments = binance.parse_exchange_info({'symbols': [
        {'symbol': native, 'status': 'TRADING', 'baseAsset': '', 'quoteAsset': '', 'filters': []}
        for native in ('BTCUSDT', 'ETHBTC', 'DOGEEUR')
    ]}, mapper)
    for instrument in instruments:
        assert mapper.from_exchange(mapper.to_exchange(instrument.symbol)) == instrument.symbol


def test_bybit_instruments_round_trip():
    mapper = ConcatSymbolMapper()
    response = {'retCode': 0, 'result': {'list': [
        {'symbol': native, 'status': 'Trading', 'baseCoin': '', 'quoteCoin': ''}
        for native in ('BTCUSDT', 'ETHUSDC')
    ]}}
    instruments = bybit.parse_instruments(response, mapper, 'linear')
    assert [i.type for i in instruments] == ['perpetual', 'perpetual']
    for instrument in instruments:
        assert mapper.from_exchange(mapper.to_exchange(instrument.symbol)) == instrument.symbol


def test_coinbase_products_round_trip():
    mapper = DashSymbolMapper()
    instruments = coinbase.parse_products([
        {'id': 'BTC-USD', 'status': 'online'},
        {'id': 'XYZ-USD', 'status': 'delisted'},
    ], mapper)
    assert [i.symbol for i in instruments] == ['BTC-USD']
    assert mapper.from_exchange(mapper.to_exchange('BTC-USD')) == 'BTC-USD'

import json

import pytest

import analyze_trades as at


def trade(ts, side="buy", sentiment=0.0, symbol="X", qty=10, price=100.0, user="u1", ctx=None, tid=None):
    return {
        "id": tid or f"t{ts}", "userId": user, "symbol": symbol, "quantity": qty,
        "price": price, "type": side, "timestamp": ts, "sentiment": sentiment,
        "newsContext": ctx or [],
    }


def news(nid, ts, sentiment=0.5, optics=0.5, headline=None):
    return {"id": nid, "headline": headline or nid, "sentiment": sentiment,
            "optics": optics, "timestamp": ts}


def test_empty_export_is_neutral():
    report = at.analyze({})
    assert report["summary"]["total_trades"] == 0
    assert report["summary"]["unique_traders"] == 0
    assert report["summary"]["total_volume"] == 0.0
    assert report["summary"]["trading_duration"] == "0m 0s"
    assert report["behavioral_metrics"] == {
        "sentiment_bias": 0, "overreaction_rate": 0, "herding_behavior": 0, "reaction_lag": 0,
    }
    assert report["news_by_impact"] == []
    assert report["trader_stats"] == []
    assert "ANALYSIS REPORT" in at.render_report(report)


def test_summary():
    data = {"trades": [
        trade(0, qty=10, price=100.0, user="a"),
        trade(90_500, qty=30, price=50.0, user="b"),
    ]}
    s = at.analyze(data)["summary"]
    assert s["total_trades"] == 2
    assert s["unique_traders"] == 2
    assert s["time_span_ms"] == 90_500
    assert s["trading_duration"] == "1m 30s"
    assert s["total_volume"] == pytest.approx(2500.0)
    assert s["average_trade_size"] == pytest.approx(20.0)


def test_sentiment_bias_example():
    data = {"trades": [
        trade(0, "buy", 0.5), trade(1, "sell", -0.3), trade(2, "sell", 0.2), trade(3, "buy", 0.0),
    ]}
    assert at.analyze(data)["behavioral_metrics"]["sentiment_bias"] == 67


def test_herding_single_window():
    df = at.trades_frame(at.normalize_trades([trade(0), trade(2000), trade(3500)]))
    assert at.herding_windows(df) == 1
    assert at.analyze({"trades": [trade(0), trade(2000), trade(3500)]})["behavioral_metrics"]["herding_behavior"] == 100


def test_herding_respects_symbol_and_gap():
    trades = [
        trade(0, symbol="A"), trade(1000, symbol="B"), trade(2000, symbol="A"),
        trade(9000, symbol="A"), trade(3000, symbol="B"), trade(4000, symbol="B"),
    ]
    df = at.trades_frame(at.normalize_trades(trades))
    # A: gaps 2000, 7000 -> none; B: gaps 2000, 1000 -> one
    assert at.herding_windows(df) == 1
    assert at.herding_score(df) == pytest.approx(0.5)


def test_reaction_lag_example():
    data = {
        "news": [news("n1", 1000)],
        "trades": [trade(4000, ctx=["n1"])],
    }
    assert at.analyze(data)["behavioral_metrics"]["reaction_lag"] == 3


def test_reaction_lag_uses_latest_published_reference():
    data = {
        "news": [news("n1", 1000), news("n2", 5000), news("n3", 9000)],
        "trades": [
            trade(7000, ctx=["n1", "n2", "n3"]),   # n3 not yet published -> lag 2000
            trade(8000, ctx=["missing"]),           # unresolvable, skipped
            trade(6000),                            # no context, skipped
        ],
    }
    assert at.reaction_lag_ms(at.normalize_trades(data["trades"]), at.normalize_news(data["news"])) == 2000


def test_overreaction_rate():
    data = {
        "news": [news("loud", 0, optics=0.9), news("quiet", 200_000, optics=0.5)],
        "trades": [
            trade(10_000, qty=150), trade(20_000, qty=50),
            trade(200_000, qty=500),  # only near quiet news
        ],
    }
    assert at.analyze(data)["behavioral_metrics"]["overreaction_rate"] == 50


def test_news_impact_recent_first_and_bounded():
    items = [news(f"n{i}", i * 1000, sentiment=0.5) for i in range(12)]
    items.append(news("flat", 500_000, sentiment=0.0))
    trades = [trade(11_000, "buy", 0.5), trade(12_000, "sell", 0.5)]
    rows = at.analyze({"news": items, "trades": trades})["news_by_impact"]

    assert len(rows) == 10
    assert rows[0]["headline"] == "flat"
    assert rows[0]["trades_within_5min"] == 0
    assert rows[1]["headline"] == "n11"
    assert rows[1]["trades_within_5min"] == 2
    assert rows[1]["average_price_change"] == pytest.approx(0.0)


def test_trader_classification():
    follower = [trade(i, "buy", 0.5, user="f", tid=f"f{i}") for i in range(4)]
    contrarian = [trade(i, "sell", 0.5, user="c", tid=f"c{i}") for i in range(3)]
    mixed = [trade(0, "buy", 0.5, user="m", tid="m0"), trade(1, "sell", 0.5, user="m", tid="m1")]
    active = ([trade(i, "buy", 0.5, user="a", tid=f"a{i}") for i in range(30)]
              + [trade(100 + i, "buy", -0.5, user="a", tid=f"b{i}") for i in range(30)])
    stats = {s["user_id"]: s for s in at.trader_stats(at.trades_frame(
        at.normalize_trades(follower + contrarian + mixed + active)))}

    assert stats["f"]["behavior_pattern"] == "Sentiment Follower"
    assert stats["c"]["behavior_pattern"] == "Contrarian"
    assert stats["m"]["behavior_pattern"] == "Rational"
    assert stats["a"]["behavior_pattern"] == "Active Trader"
    assert at.trader_stats(at.trades_frame(at.normalize_trades(active + follower)))[0]["user_id"] == "a"


def test_realized_win_rate():
    trades = [
        trade(0, "buy", qty=10, price=100.0),
        trade(1, "sell", qty=5, price=110.0),
        trade(2, "sell", qty=5, price=90.0),
        trade(3, "sell", qty=5, price=120.0),  # nothing held, not matched
    ]
    [stats] = at.analyze({"trades": trades})["trader_stats"]
    assert stats["closed_trades"] == 2
    assert stats["win_rate"] == 50
    assert stats["realized_pnl"] == pytest.approx(0.0)
    # (avg sell 106.67 - avg buy 100) / 100
    assert stats["average_gain"] == pytest.approx(6.67)


def test_malformed_records_get_defaults():
    data = {"trades": [{"id": "x", "userId": "u", "symbol": "S", "quantity": 5,
                        "price": 10, "type": "buy", "timestamp": 0}, "junk"],
            "news": None}
    report = at.analyze(data)
    assert report["summary"]["total_trades"] == 1
    assert report["behavioral_metrics"]["sentiment_bias"] == 0


def test_non_list_collections_are_empty():
    report = at.analyze({"trades": 5, "news": {"id": "n1"}})
    assert report["summary"]["total_trades"] == 0
    assert report["news_by_impact"] == []


def test_cli_requires_path(capsys):
    assert at.main([]) == 1
    assert "Usage" in capsys.readouterr().err


def test_cli_missing_file(tmp_path, capsys):
    assert at.main([str(tmp_path / "nope.json")]) == 1
    assert "File not found" in capsys.readouterr().err


def test_cli_bad_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    assert at.main([str(path)]) == 1


def test_cli_undecodable_file(tmp_path, capsys):
    path = tmp_path / "latin.json"
    path.write_bytes(b'{"trades": [{"headline": "\xff\xfe"}]}')
    assert at.main([str(path)]) == 1
    assert "Could not read" in capsys.readouterr().err


def test_cli_prints_report(tmp_path, capsys):
    path = tmp_path / "market-data-1.json"
    path.write_text(json.dumps({
        "trades": [trade(0, "buy", 0.5, user="participant-123456"), trade(1000, "sell", -0.5)],
        "news": [news("n1", 0, headline="Chip rally")],
    }))
    assert at.main([str(path)]) == 0
    out = capsys.readouterr().out
    assert "market-data-1.json" in out
    assert "Sentiment Bias: 100%" in out
    assert '"Chip rally"' in out
    assert "particip..." in out


def test_cli_json_output(tmp_path, capsys):
    path = tmp_path / "export.json"
    path.write_text(json.dumps({"trades": [], "news": []}))
    assert at.main([str(path), "--json"]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["summary"]["total_trades"] == 0

from chat_core.providers.key_roulette import KeyRoulette, split_keys


def test_split_keys():
    assert split_keys("a, b\nc  d") == ["a", "b", "c", "d"]
    assert split_keys("") == []


def test_round_robin_per_key_string():
    roulette = KeyRoulette()
    assert [roulette.next("a,b,c") for _ in range(4)] == ["a", "b", "c", "a"]
    assert roulette.next("x,y") == "x"
    assert roulette.next("a,b,c") == "b"


def test_single_and_empty():
    roulette = KeyRoulette()
    assert roulette.next("only") == "only"
    assert roulette.next("only") == "only"
    assert roulette.next("  ") == ""

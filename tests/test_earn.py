from astranodes.earn import EarnTokenStore


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_issue_returns_64_hex_chars():
    store = EarnTokenStore()
    token = store.issue(1)
    assert len(token) == 64
    int(token, 16)


def test_token_is_single_use():
    store = EarnTokenStore()
    token = store.issue(1)
    assert store.consume(token, 1) == (True, None)
    assert store.consume(token, 1) == (False, 'Token not found or already used')


def test_token_bound_to_user():
    store = EarnTokenStore()
    token = store.issue(1)
    assert store.consume(token, 2) == (False, 'Token user mismatch')
    # the rightful owner can still use it
    assert store.consume(token, 1) == (True, None)


def test_missing_token():
    assert EarnTokenStore().consume('', 1) == (False, 'No earn token provided')
    assert EarnTokenStore().consume(None, 1) == (False, 'No earn token provided')


def test_min_view_time():
    clock = Clock()
    store = EarnTokenStore(min_view=4, clock=clock)
    token = store.issue(1)
    clock.now += 1.5
    assert store.consume(token, 1) == (False, 'Token not yet valid, wait 3s more')
    clock.now += 3
    assert store.consume(token, 1) == (True, None)


def test_expired_token_is_rejected_and_dropped():
    clock = Clock()
    store = EarnTokenStore(clock=clock)
    token = store.issue(1)
    clock.now += 91
    assert store.consume(token, 1) == (False, 'Token expired, please reload and try again')
    assert store.consume(token, 1) == (False, 'Token not found or already used')


def test_issue_purges_expired_tokens():
    clock = Clock()
    store = EarnTokenStore(clock=clock)
    store.issue(1)
    store.issue(2)
    clock.now += 120
    store.issue(3)
    assert len(store) == 1

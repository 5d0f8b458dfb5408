import pytest

from backend.analytics.useragent import browser_name, classify, device_type

CHROME_ANDROID = (
    "Mozilla/5.0 (Linux; Android 13; Pixel 7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/119.0.0.0 Mobile Safari/537.36"
)
IPAD = "Mozilla/5.0 (iPad; CPU OS 14_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko)"
IPHONE_SAFARI = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
ANDROID_TABLET = (
    "Mozilla/5.0 (Linux; Android 12; SM-X700) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/118.0.0.0 Safari/537.36 Tablet"
)
WINDOWS_EDGE = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0"
)
WINDOWS_OPERA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 OPR/105.0.0.0"
)
MAC_FIREFOX = "Mozilla/5.0 (Macintosh; Intel Mac OS X 14.1; rv:120.0) Gecko/20100101 Firefox/120.0"


def test_ipad_is_tablet():
    assert classify(IPAD).device == "tablet"


def test_android_tablet_wins_over_mobile_tokens():
    info = classify(ANDROID_TABLET)
    assert info.device == "tablet"
    assert info.browser == "Chrome"


def test_chrome_on_android_is_mobile_chrome():
    assert classify(CHROME_ANDROID) == ("mobile", "Chrome")


def test_empty_user_agent_defaults():
    assert classify("") == ("desktop", "Other")
    assert classify(None) == ("desktop", "Other")


@pytest.mark.parametrize(
    "user_agent, expected",
    [
        (WINDOWS_EDGE, "Edge"),
        (WINDOWS_OPERA, "Opera"),
        (MAC_FIREFOX, "Firefox"),
        (IPHONE_SAFARI, "Safari"),
        ("curl/8.4.0", "Other"),
    ],
)
def test_browser_name(user_agent, expected):
    assert browser_name(user_agent) == expected


def test_matching_is_case_insensitive():
    assert device_type("SOME IPHONE CLIENT") == "mobile"
    assert browser_name("FIREFOX") == "Firefox"


def test_desktop_without_device_tokens():
    assert device_type(MAC_FIREFOX) == "desktop"

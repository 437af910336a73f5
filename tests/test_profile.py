from roster.domain.profile import UNKNOWN_PLAYER, normalize_profile


def test_name_alias_order():
    raw = {"name": "n", "displayName": "Display", "fullName": "Full Name"}
    assert normalize_profile(raw).name == "Full Name"
    assert normalize_profile({"fullname": "lower", "displayName": "Display"}).name == "lower"
    assert normalize_profile({"displayName": "Display", "name": "n"}).name == "Display"
    assert normalize_profile({"name": "  Plain  "}).name == "Plain"


def test_first_last_then_fallback():
    assert normalize_profile({"firstName": "Ada", "lastName": "Lovelace"}).name == "Ada Lovelace"
    # half a name is not a name
    assert normalize_profile({"firstName": "Ada"}, fallback_name="ada").name == "ada"
    assert normalize_profile({}, fallback_name="  ").name == UNKNOWN_PLAYER
    assert normalize_profile(None).name == UNKNOWN_PLAYER


def test_blank_values_skipped():
    p = normalize_profile({"fullName": "", "displayName": "D", "photoURL": " ", "picture": "https://x/p.png"})
    assert p.name == "D"
    assert p.photo_url == "https://x/p.png"


def test_photo_aliases():
    assert normalize_profile({"photoURL": "a", "photoUrl": "b"}).photo_url == "a"
    assert normalize_profile({"photo_url": "c"}).photo_url == "c"
    assert normalize_profile({"name": "x"}).photo_url is None

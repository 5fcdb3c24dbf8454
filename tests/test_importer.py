"""Tests for third-party CSV import."""
from lockvault.importer import (
    detect_source,
    guess_category,
    import_from_csv,
    normalize_header,
    parse_csv,
)
from lockvault.models import Category

CHROME_CSV = """name,url,username,password
GitHub,https://github.com,octocat,gh-secret
,https://www.example.org/login,someone,ex-secret
Broken,https://broken.example.com,nobody,
"""

LASTPASS_CSV = """url,username,password,extra,name,grouping,fav
https://bank.example.com,alice,b4nk,"pin is 1234",My Bank,Finance/Banks,1
https://intranet.corp,alice,w0rk,,Intranet,Work,0
"""

BITWARDEN_CSV = """folder,favorite,type,name,notes,fields,login_uri,login_username,login_password,login_totp
,,login,Mail,,,https://mail.example.com,me@example.com,m4il,
"""


class TestParse:
    def test_normalize_header(self):
        assert normalize_header("  Login URI ") == "login_uri"

    def test_blank_lines_and_quotes(self):
        rows = parse_csv('a,b\n\n"x, y",z\n')
        assert rows == [{"a": "x, y", "b": "z"}]

    def test_header_only(self):
        assert parse_csv("name,url,username,password\n") == []

    def test_short_rows_padded(self):
        assert parse_csv("a,b,c\n1\n") == [{"a": "1", "b": "", "c": ""}]


class TestDetect:
    def test_sources(self):
        assert detect_source(["name", "url", "username", "password"]) == "chrome"
        assert detect_source(["url", "username", "password", "httpRealm", "formActionOrigin"]) == "firefox"
        assert detect_source(["url", "username", "password", "extra", "name", "grouping", "fav"]) == "lastpass"
        assert detect_source(["name", "login_uri", "login_username", "login_password"]) == "bitwarden"
        assert detect_source(["Group", "Title", "Username", "Password", "URL", "Notes", "TOTP"]) == "keepass"
        assert detect_source(["Title", "URL", "Username", "Password"]) == "onepassword"

    def test_guess_category(self):
        assert guess_category({"grouping": "Finance/Banks"}, "lastpass") is Category.FINANCE
        assert guess_category({"group": "Social Media"}, "keepass") is Category.SOCIAL
        assert guess_category({"group": "Misc"}, "keepass") is Category.OTHER
        assert guess_category({}, "chrome") is Category.OTHER


class TestImport:
    def test_chrome_rows_and_skips(self):
        result = import_from_csv(CHROME_CSV)
        assert result.source == "chrome"
        assert result.skipped == 1
        assert len(result.entries) == 2
        github, example = result.entries
        assert github.site_name == "GitHub"
        assert github.username == "octocat"
        assert github.password == "gh-secret"
        # site name derived from the URL host
        assert example.site_name == "example.org"
        assert github.id != example.id

    def test_lastpass_metadata(self):
        result = import_from_csv(LASTPASS_CSV)
        bank, intranet = result.entries
        assert bank.site_name == "My Bank"
        assert bank.category is Category.FINANCE
        assert bank.favorite is True
        assert bank.notes == "pin is 1234"
        assert intranet.category is Category.WORK
        assert intranet.favorite is False
        assert intranet.notes is None

    def test_bitwarden(self):
        result = import_from_csv(BITWARDEN_CSV)
        assert result.source == "bitwarden"
        [entry] = result.entries
        assert entry.site_name == "Mail"
        assert entry.url == "https://mail.example.com"
        assert entry.username == "me@example.com"
        assert entry.password == "m4il"

    def test_empty_input(self):
        result = import_from_csv("")
        assert result.entries == []
        assert result.skipped == 0

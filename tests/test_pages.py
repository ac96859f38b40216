from pathlib import Path

from streamlit.testing.v1 import AppTest

INVESTOR_PAGE = str(Path(__file__).resolve().parent.parent / "pages" / "01_Investor.py")


class TestInvestorPage:
    def _run(self, db_file, monkeypatch):
        url, _ = db_file
        monkeypatch.setenv("DATABASE_URL", url)
        at = AppTest.from_file(INVESTOR_PAGE, default_timeout=30)
        at.run()
        assert not at.exception
        return at

    def test_heading_uses_investor_name(self, db_file, monkeypatch):
        at = self._run(db_file, monkeypatch)
        headings = [h.value for h in at.subheader]
        assert "Portefeuille — Alice Martin" in headings
        assert not any("(alice)" in h for h in headings)

    def test_heading_follows_selection(self, db_file, monkeypatch):
        at = self._run(db_file, monkeypatch)
        at.sidebar.selectbox[0].select("Bob Chen (bob)").run()
        assert not at.exception
        assert "Portefeuille — Bob Chen" in [h.value for h in at.subheader]

import os
import unittest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import models  # noqa: F401
from database import Base, SessionLocal, engine
from models.user import User
from services.errors import ConflictError, NotFoundError
from services.personalization_service import get_personalization, update_personalization
from services.watchlist_service import (
    add_watchlist_item,
    create_watchlist,
    delete_watchlist,
    list_watchlists,
    remove_watchlist_item,
    update_watchlist,
    update_watchlist_item,
)


class _DBTestCase(unittest.TestCase):
    def setUp(self):
        Base.metadata.drop_all(bind=engine)
        Base.metadata.create_all(bind=engine)
        self.db = SessionLocal()
        user = User(supabase_user_id="sub-w", email="w@example.com")
        self.db.add(user)
        self.db.commit()
        self.user_id = user.id

    def tearDown(self):
        self.db.close()


class TestWatchlistService(_DBTestCase):
    def test_first_watchlist_becomes_default(self):
        first = create_watchlist(self.db, self.user_id, name="Tech", symbols=["aapl", "MSFT", "aapl"])
        second = create_watchlist(self.db, self.user_id, name="Dividends")
        self.assertTrue(first.is_default)
        self.assertFalse(second.is_default)
        self.assertEqual([i.symbol for i in first.items], ["AAPL", "MSFT"])

    def test_duplicate_name_conflicts(self):
        create_watchlist(self.db, self.user_id, name="Tech")
        with self.assertRaises(ConflictError):
            create_watchlist(self.db, self.user_id, name="Tech")

    def test_switching_default(self):
        first = create_watchlist(self.db, self.user_id, name="A")
        second = create_watchlist(self.db, self.user_id, name="B")
        update_watchlist(self.db, self.user_id, second.id, is_default=True)
        lists = list_watchlists(self.db, self.user_id)
        self.assertEqual([w.id for w in lists if w.is_default], [second.id])
        self.assertEqual(lists[-1].id, first.id)

    def test_deleting_default_promotes_another(self):
        first = create_watchlist(self.db, self.user_id, name="A")
        second = create_watchlist(self.db, self.user_id, name="B")
        delete_watchlist(self.db, self.user_id, first.id)
        lists = list_watchlists(self.db, self.user_id)
        self.assertEqual([(w.id, w.is_default) for w in lists], [(second.id, True)])

    def test_item_lifecycle(self):
        wl = create_watchlist(self.db, self.user_id, name="Tech")
        wl = add_watchlist_item(self.db, self.user_id, wl.id, symbol=" nvda ", note="AI", target_price=100.0)
        self.assertEqual(wl.items[0].symbol, "NVDA")

        with self.assertRaises(ConflictError):
            add_watchlist_item(self.db, self.user_id, wl.id, symbol="NVDA")

        wl = update_watchlist_item(self.db, self.user_id, wl.id, symbol="nvda", target_price=None)
        self.assertIsNone(wl.items[0].target_price)
        self.assertEqual(wl.items[0].note, "AI")

        wl = remove_watchlist_item(self.db, self.user_id, wl.id, symbol="NVDA")
        self.assertEqual(wl.items, [])
        with self.assertRaises(NotFoundError):
            remove_watchlist_item(self.db, self.user_id, wl.id, symbol="NVDA")

    def test_other_users_watchlist_is_not_found(self):
        other = User(supabase_user_id="sub-x", email="x@example.com")
        self.db.add(other)
        self.db.commit()
        wl = create_watchlist(self.db, other.id, name="Mine")
        with self.assertRaises(NotFoundError):
            add_watchlist_item(self.db, self.user_id, wl.id, symbol="AAPL")

    def test_invalid_symbol(self):
        wl = create_watchlist(self.db, self.user_id, name="Tech")
        with self.assertRaises(ValueError):
            add_watchlist_item(self.db, self.user_id, wl.id, symbol="   ")


class TestPersonalizationService(_DBTestCase):
    def test_defaults_without_row(self):
        settings = get_personalization(self.db, self.user_id)
        self.assertEqual(settings["risk_profile"], "balanced")
        self.assertEqual(settings["focus_areas"], ["return", "risk", "diversification"])
        self.assertIsNone(settings["updated_at"])

    def test_profile_defaults_apply_on_first_save(self):
        settings = update_personalization(self.db, self.user_id, risk_profile="aggressive")
        self.assertEqual(settings["focus_areas"], ["growth", "momentum", "allocation"])
        self.assertEqual(settings["investment_goal"], "balanced")

    def test_stored_areas_survive_profile_change(self):
        update_personalization(self.db, self.user_id, focus_areas=["income"])
        settings = update_personalization(self.db, self.user_id, risk_profile="conservative")
        self.assertEqual(settings["risk_profile"], "conservative")
        self.assertEqual(settings["focus_areas"], ["income"])

    def test_empty_areas_reset_to_profile_defaults(self):
        update_personalization(self.db, self.user_id, risk_profile="conservative", focus_areas=["growth"])
        settings = update_personalization(self.db, self.user_id, focus_areas=[])
        self.assertEqual(settings["focus_areas"], ["risk", "income", "diversification"])


if __name__ == "__main__":
    unittest.main()

"""
Test suite for the connection supervisor.

Covers disconnect bookkeeping, the turn-skip and forfeiture timers, and
reconnection. Uses the fast_harness fixture so grace periods elapse within
a test (turn skip 0.02s, forfeiture 0.2s).

Run with: pytest test_supervisor.py -v
"""

import asyncio

import pytest

from errors import ReconnectNotEligible
from game import Color, GamePhase
from handlers import handle_draw_card, handle_play_card, handle_reconnect


async def disconnect(harness, room, ctxs, name):
    return await harness.supervisor.handle_disconnect(room, name, ctxs[name].connection_id)


class TestDisconnect:

    @pytest.mark.asyncio
    async def test_disconnect_holds_seat(self, harness):
        room, ctxs = await harness.setup_room()

        assert await disconnect(harness, room, ctxs, "Bob")

        assert "Bob" in room.disconnected
        assert room.game.seat_of("Bob") == 1
        notice = ctxs["Alice"].websocket.messages_of_type("player_disconnected")[0]
        assert notice["player_name"] == "Bob"
        assert [p["connected"] for p in notice["players"]] == [True, False]
        assert room.disconnected["Bob"].forfeit_timer is not None
        assert room.disconnected["Bob"].turn_timer is None

    @pytest.mark.asyncio
    async def test_stale_connection_ignored(self, harness):
        room, ctxs = await harness.setup_room()

        assert not await harness.supervisor.handle_disconnect(room, "Bob", "some-old-connection")

        assert room.disconnected == {}
        assert ctxs["Alice"].websocket.messages == []

    @pytest.mark.asyncio
    async def test_disconnect_on_own_turn_schedules_skip(self, harness):
        room, ctxs = await harness.setup_room()
        await disconnect(harness, room, ctxs, "Alice")
        assert room.disconnected["Alice"].turn_timer is not None

    @pytest.mark.asyncio
    async def test_disconnect_after_room_destroyed_is_noop(self, harness):
        room, ctxs = await harness.setup_room()
        harness.room_manager.remove_room(room.code)
        assert not await disconnect(harness, room, ctxs, "Bob")


class TestTurnSkip:

    @pytest.mark.asyncio
    async def test_absent_player_turn_skipped_once(self, fast_harness):
        """Disconnecting on your turn passes it after the grace period, exactly once."""
        room, ctxs = await fast_harness.setup_room()
        await disconnect(fast_harness, room, ctxs, "Alice")

        await asyncio.sleep(0.1)

        skipped = ctxs["Bob"].websocket.messages_of_type("turn_skipped")
        assert len(skipped) == 1
        assert skipped[0]["player_name"] == "Alice"
        assert room.game.current_player().name == "Bob"
        assert ctxs["Bob"].websocket.messages_of_type("your_turn")
        assert len(room.game.players[0].hand) == 7
        room.game.check_invariants()

    @pytest.mark.asyncio
    async def test_turn_arriving_at_absent_seat_is_skipped(self, fast_harness):
        room, ctxs = await fast_harness.setup_room(names=("Alice", "Bob", "Cy"))
        await disconnect(fast_harness, room, ctxs, "Cy")
        assert room.disconnected["Cy"].turn_timer is None

        await handle_draw_card({}, ctxs["Alice"], **fast_harness.deps())
        await handle_draw_card({}, ctxs["Bob"], **fast_harness.deps())
        assert room.game.current_player().name == "Cy"

        await asyncio.sleep(0.1)

        skipped = ctxs["Alice"].websocket.messages_of_type("turn_skipped")
        assert [m["player_name"] for m in skipped] == ["Cy"]
        assert room.game.current_player().name == "Alice"

    @pytest.mark.asyncio
    async def test_pending_wild_gets_auto_color(self, fast_harness):
        room, ctxs = await fast_harness.setup_room()
        fast_harness.arrange(room, [[("wild", "wild"), ("yellow", "1"), ("yellow", "2")], [("blue", "4")]])
        await handle_play_card({"card_index": 0}, ctxs["Alice"], **fast_harness.deps())
        await disconnect(fast_harness, room, ctxs, "Alice")

        await asyncio.sleep(0.1)

        confirmed = ctxs["Bob"].websocket.messages_of_type("color_selection_confirmed")
        assert confirmed[0]["color"] == "yellow"
        assert confirmed[0]["auto_selected"]
        assert room.game.top_card().selected_color == Color.YELLOW
        assert room.game.phase == GamePhase.IN_PROGRESS
        assert room.game.current_player().name == "Bob"

    @pytest.mark.asyncio
    async def test_pending_draw_four_with_dry_deck_does_not_stall(self, fast_harness):
        room, ctxs = await fast_harness.setup_room()
        fast_harness.arrange(room, [[("wild", "draw_four"), ("yellow", "1")], [("blue", "4")]])
        game = room.game
        game.forfeited_hands = [game.deck.cards]
        game.deck.cards = []
        game.check_invariants()

        await handle_play_card({"card_index": 0}, ctxs["Alice"], **fast_harness.deps())
        await disconnect(fast_harness, room, ctxs, "Alice")

        await asyncio.sleep(0.1)

        assert game.phase == GamePhase.IN_PROGRESS
        assert game.top_card().selected_color == Color.YELLOW
        assert game.current_player().name == "Bob"
        assert len(game.players[1].hand) == 1
        assert [m["player_name"] for m in ctxs["Bob"].websocket.messages_of_type("turn_skipped")] == ["Alice"]
        assert not ctxs["Bob"].websocket.messages_of_type("card_drawn")
        assert ctxs["Bob"].websocket.messages_of_type("your_turn")
        game.check_invariants()

    @pytest.mark.asyncio
    async def test_saved_hand_tracks_penalties(self, harness):
        room, ctxs = await harness.setup_room()
        harness.arrange(room, [[("red", "draw_two"), ("green", "3")], [("blue", "4")]])
        await disconnect(harness, room, ctxs, "Bob")

        await handle_play_card({"card_index": 0}, ctxs["Alice"], **harness.deps())

        record = room.disconnected["Bob"]
        assert record.saved_hand is room.game.get_player("Bob").hand
        assert len(record.saved_hand) == 3

    @pytest.mark.asyncio
    async def test_reconnect_before_skip_cancels_it(self, fast_harness):
        room, ctxs = await fast_harness.setup_room()
        await disconnect(fast_harness, room, ctxs, "Alice")

        await handle_reconnect({"room_code": room.code, "player_name": "Alice"}, fast_harness.connect(), **fast_harness.deps())
        await asyncio.sleep(0.1)

        assert not ctxs["Bob"].websocket.messages_of_type("turn_skipped")
        assert room.game.current_player().name == "Alice"


class TestForfeit:

    @pytest.mark.asyncio
    async def test_forfeit_removes_seat(self, fast_harness):
        room, ctxs = await fast_harness.setup_room(names=("Alice", "Bob", "Cy"))
        await disconnect(fast_harness, room, ctxs, "Bob")

        await asyncio.sleep(0.35)

        assert "Bob" not in room.players
        assert "Bob" not in room.disconnected
        left = ctxs["Alice"].websocket.messages_of_type("player_left")[0]
        assert left == {
            "type": "player_left",
            "player_name": "Bob",
            "reason": "forfeited",
            "players": room.player_list(),
        }
        assert room.game.phase == GamePhase.IN_PROGRESS
        assert len(room.game.forfeited_hands) == 1
        room.game.check_invariants()

    @pytest.mark.asyncio
    async def test_forfeit_leaving_one_player_ends_game(self, fast_harness):
        room, ctxs = await fast_harness.setup_room()
        await disconnect(fast_harness, room, ctxs, "Bob")

        await asyncio.sleep(0.35)

        over = ctxs["Alice"].websocket.messages_of_type("game_over")
        assert over[0]["winner"] == "Alice"
        assert room.game.phase == GamePhase.FINISHED

    @pytest.mark.asyncio
    async def test_everyone_gone_destroys_room(self, fast_harness):
        room, ctxs = await fast_harness.setup_room(names=("Alice",), start=False)
        await disconnect(fast_harness, room, ctxs, "Alice")

        await asyncio.sleep(0.35)

        assert fast_harness.room_manager.rooms == {}


class TestReconnect:

    @pytest.mark.asyncio
    async def test_reconnect_restores_seat_and_hand(self, fast_harness):
        """A returning player gets the same seat and hand; nobody else changes."""
        room, ctxs = await fast_harness.setup_room(names=("Alice", "Bob", "Cy"))
        hands_before = [list(p.hand) for p in room.game.players]
        turn_before = room.game.current_turn_index
        await disconnect(fast_harness, room, ctxs, "Bob")

        new_ctx = fast_harness.connect()
        await handle_reconnect({"room_code": room.code, "player_name": "Bob"}, new_ctx, **fast_harness.deps())

        assert new_ctx.current_room is room
        assert new_ctx.player_name == "Bob"
        assert room.game.seat_of("Bob") == 1
        assert [p.hand for p in room.game.players] == hands_before
        assert room.game.current_turn_index == turn_before
        assert room.players["Bob"].websocket is new_ctx.websocket
        assert "Bob" not in room.disconnected

        snapshot = new_ctx.websocket.messages_of_type("reconnected")[0]
        assert snapshot["game_state"]["hand"] == [c.to_dict() for c in hands_before[1]]
        back = ctxs["Alice"].websocket.messages_of_type("player_reconnected")[0]
        assert back["player_name"] == "Bob"
        assert not new_ctx.websocket.messages_of_type("player_reconnected")

        await asyncio.sleep(0.35)
        assert "Bob" in room.players

    @pytest.mark.asyncio
    async def test_old_socket_close_after_reconnect_is_ignored(self, harness):
        room, ctxs = await harness.setup_room()
        await disconnect(harness, room, ctxs, "Bob")
        new_ctx = harness.connect()
        await handle_reconnect({"room_code": room.code, "player_name": "Bob"}, new_ctx, **harness.deps())

        assert not await disconnect(harness, room, ctxs, "Bob")
        assert room.players["Bob"].connected

    @pytest.mark.asyncio
    async def test_room_gone(self, harness):
        with pytest.raises(ReconnectNotEligible) as exc:
            await handle_reconnect({"room_code": "NOROOM", "player_name": "Bob"}, harness.connect(), **harness.deps())
        assert exc.value.reason == "room_gone"
        assert exc.value.to_message()["reason"] == "room_gone"

    @pytest.mark.asyncio
    async def test_already_active(self, harness):
        room, _ = await harness.setup_room()
        with pytest.raises(ReconnectNotEligible) as exc:
            await handle_reconnect({"room_code": room.code, "player_name": "Bob"}, harness.connect(), **harness.deps())
        assert exc.value.reason == "already_active"

    @pytest.mark.asyncio
    async def test_never_present(self, harness):
        room, _ = await harness.setup_room()
        with pytest.raises(ReconnectNotEligible) as exc:
            await handle_reconnect({"room_code": room.code, "player_name": "Zed"}, harness.connect(), **harness.deps())
        assert exc.value.reason == "never_present"

    @pytest.mark.asyncio
    async def test_forfeited_player_cannot_return(self, fast_harness):
        room, ctxs = await fast_harness.setup_room(names=("Alice", "Bob", "Cy"))
        await disconnect(fast_harness, room, ctxs, "Bob")
        await asyncio.sleep(0.35)

        with pytest.raises(ReconnectNotEligible) as exc:
            await handle_reconnect({"room_code": room.code, "player_name": "Bob"}, fast_harness.connect(), **fast_harness.deps())
        assert exc.value.reason == "never_present"


class TestRoomTeardown:

    @pytest.mark.asyncio
    async def test_destroy_room(self, harness):
        room, ctxs = await harness.setup_room()
        await disconnect(harness, room, ctxs, "Bob")
        timer = room.disconnected["Bob"].forfeit_timer

        async with room.game_lock:
            await harness.supervisor.destroy_room(room, "Host ended the game")
        await asyncio.sleep(0)

        assert harness.room_manager.rooms == {}
        assert ctxs["Alice"].websocket.messages_of_type("game_ended")[0]["reason"] == "Host ended the game"
        assert timer.cancelled()

    @pytest.mark.asyncio
    async def test_shutdown_cancels_timers(self, harness):
        room, ctxs = await harness.setup_room()
        await disconnect(harness, room, ctxs, "Alice")
        record = room.disconnected["Alice"]
        timers = [record.turn_timer, record.forfeit_timer]

        await harness.supervisor.shutdown()
        await asyncio.sleep(0)

        assert all(t.cancelled() for t in timers)

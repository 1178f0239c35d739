import json
import logging

import pytest

from fleetlink.core.errors import ScenarioLoadError
from fleetlink.core.registry import ConnectionRegistry
from fleetlink.core.router import MessageRouter
from fleetlink.core.packet import encode_text, status_packet
from fleetlink.core.scenario import PlayerState, ScenarioPlayer, is_server_identity, load_scenario

from conftest import DummyChannel, DummySink

SERVER = "ACS_SERVER"


def write_json(tmp_path, steps, name="scenario.json"):
    path = tmp_path / name
    path.write_text(json.dumps(steps), encoding="utf-8")
    return path


def step(offset, receiver="AGV_01", sender=SERVER, **kw):
    return {"time_offset_ms": offset, "sender_id": sender, "receiver_id": receiver,
            "message_type": "COMMAND", "command": "MOVE_PATH",
            "description": f"step at {offset}", **kw}


def make_player(path, clock, broadcast, registry=None, startup_delay=0.0):
    return ScenarioPlayer(path, registry or ConnectionRegistry(), broadcast, SERVER,
                          startup_delay=startup_delay, clock=clock, sleep=clock.sleep)


# --- loading ---

def test_load_keeps_file_order_and_defaults(tmp_path):
    path = write_json(tmp_path, [
        step(500, task_id="T1", payload={"final_dest": "CELL_A", "waypoints": ["QR1"]}),
        {"time_offset_ms": 100, "target_id": "AMR_01", "command": "DELIVER_PART"},
    ])
    steps = load_scenario(path, default_sender=SERVER)
    assert [s.time_offset_ms for s in steps] == [500, 100]
    first, second = steps
    assert first.task_id == "T1"
    assert first.payload["waypoints"] == ["QR1"]
    assert second.receiver_id == "AMR_01"
    assert second.sender_id == SERVER
    assert second.message_type == "COMMAND"
    assert second.description == "Mission Assigned"
    assert second.task_id is None
    assert isinstance(steps, tuple)


def test_load_yaml_with_steps_key(tmp_path):
    path = tmp_path / "s.yaml"
    path.write_text(
        "steps:\n"
        "  - {time_offset_ms: 0, target_id: AMR_01, command: MOVE_CMD}\n"
        "  - {time_offset_ms: 10, receiver_id: ALL, command: SHIFT_END, message_type: LOG}\n",
        encoding="utf-8",
    )
    steps = load_scenario(path, default_sender=SERVER)
    assert [s.command for s in steps] == ["MOVE_CMD", "SHIFT_END"]
    assert steps[1].message_type == "LOG"


def test_missing_file(tmp_path):
    with pytest.raises(ScenarioLoadError):
        load_scenario(tmp_path / "nope.json", default_sender=SERVER)


@pytest.mark.parametrize("content", [
    "{not json",
    '{"steps": 3}',
    '[{"receiver_id": "A", "command": "X"}]',
    '[{"time_offset_ms": "soon", "receiver_id": "A", "command": "X"}]',
    '[{"time_offset_ms": 0, "command": "X"}]',
    '[{"time_offset_ms": 0, "receiver_id": "A"}]',
    '[{"time_offset_ms": 0, "receiver_id": "A", "command": "X", "payload": [1]}]',
])
def test_unparsable_scenarios(tmp_path, content):
    path = tmp_path / "bad.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ScenarioLoadError):
        load_scenario(path, default_sender=SERVER)


def test_server_identity():
    assert is_server_identity("ACS_SERVER", SERVER)
    assert is_server_identity("DCC_SERVER", SERVER)
    assert not is_server_identity("AGV_01", SERVER)


# --- replay ---

def test_steps_run_in_order_never_early(tmp_path, clock, broadcast):
    path = write_json(tmp_path, [step(0), step(1500), step(1000), step(4000)])
    player = make_player(path, clock, broadcast)
    player.run()
    assert player.state is PlayerState.DONE
    offsets = [r.step.time_offset_ms for r in player.results]
    assert offsets == [0, 1500, 1000, 4000]
    for r in player.results:
        assert r.executed_at_ms >= r.step.time_offset_ms
    # the late step runs immediately: no negative or zero-length wait
    assert clock.sleeps == pytest.approx([1.5, 2.5])


def test_startup_delay_before_timeline(tmp_path, clock, broadcast):
    path = write_json(tmp_path, [step(1000)])
    player = make_player(path, clock, broadcast, startup_delay=5.0)
    player.run()
    assert clock.sleeps == pytest.approx([5.0, 1.0])
    assert player.results[0].executed_at_ms == pytest.approx(1000)


def test_delivers_to_connected_device_and_mirrors(tmp_path, clock, broadcast):
    reg = ConnectionRegistry()
    sink = DummySink()
    reg.register("AGV_01", sink)
    path = write_json(tmp_path, [step(0, task_id="T1",
                                      payload={"final_dest": "CELL_A", "waypoints": ["QR1", "QR2"]})])
    player = make_player(path, clock, broadcast, registry=reg)
    player.run()
    assert player.results[0].delivered_to == ["AGV_01"]
    assert broadcast.published == sink.sent
    sent = sink.packets()[0]
    assert sent["header"]["type"] == "COMMAND"
    assert sent["header"]["sender_id"] == SERVER
    assert sent["body"] == {"task_id": "T1", "command": "MOVE_PATH",
                            "payload": {"final_dest": "CELL_A", "waypoints": ["QR1", "QR2"]}}


def test_missing_task_id_is_synthesized(tmp_path, clock, broadcast):
    path = write_json(tmp_path, [step(0), step(0)])
    make_player(path, clock, broadcast).run()
    ids = [json.loads(p)["body"]["task_id"] for p in broadcast.published]
    assert all(i.startswith("AUTO_") for i in ids)
    assert ids[0] != ids[1]


def test_undeliverable_is_logged_but_still_mirrored(tmp_path, clock, broadcast, caplog):
    path = write_json(tmp_path, [step(0, receiver="AGV_99"), step(10, receiver="AGV_98")])
    player = make_player(path, clock, broadcast)
    with caplog.at_level(logging.WARNING):
        player.run()
    assert [r.undeliverable for r in player.results] == [True, True]
    assert len(broadcast.published) == 2
    assert "undeliverable" in caplog.text
    assert player.state is PlayerState.DONE


def test_robot_sent_steps_are_mirrored_not_delivered(tmp_path, clock, broadcast):
    reg = ConnectionRegistry()
    sink = DummySink()
    reg.register("ACS_SERVER", sink)
    reg.register("AGV_01", DummySink())
    path = write_json(tmp_path, [step(0, sender="AGV_01", receiver="ACS_SERVER")])
    player = make_player(path, clock, broadcast, registry=reg)
    player.run()
    assert sink.sent == []
    assert player.results[0].undeliverable is False
    assert len(broadcast.published) == 1


def test_all_receiver_fans_out(tmp_path, clock, broadcast):
    reg = ConnectionRegistry()
    sinks = [DummySink(), DummySink()]
    reg.register("AGV_01", sinks[0])
    reg.register("CELL_01", sinks[1])
    path = write_json(tmp_path, [step(0, receiver="ALL")])
    player = make_player(path, clock, broadcast, registry=reg)
    player.run()
    assert sorted(player.results[0].delivered_to) == ["AGV_01", "CELL_01"]


def test_load_failure_halts_at_loaded(tmp_path, clock, broadcast, caplog):
    player = make_player(tmp_path / "missing.json", clock, broadcast)
    with caplog.at_level(logging.ERROR):
        player.run()
    assert player.state is PlayerState.LOADED
    assert player.load_error is not None
    assert player.results == []
    assert broadcast.published == []


def test_disconnected_device_becomes_undeliverable(tmp_path, clock, broadcast):
    reg = ConnectionRegistry()
    router = MessageRouter(reg, broadcast, SERVER)
    ch = DummyChannel([encode_text(status_packet("AGV_01", SERVER, "AGV", "ACTIVE"))])
    router.serve(ch)  # connects, reports, disconnects
    path = write_json(tmp_path, [step(0, receiver="AGV_01")])
    player = make_player(path, clock, broadcast, registry=reg)
    player.run()
    assert player.results[0].undeliverable is True
    assert ch.sent == []


def test_player_thread_runs_to_done(tmp_path, broadcast):
    path = write_json(tmp_path, [step(0), step(20)])
    player = ScenarioPlayer(path, ConnectionRegistry(), broadcast, SERVER, startup_delay=0)
    player.start()
    player.join(timeout=5)
    assert player.state is PlayerState.DONE
    assert len(player.results) == 2
    assert player.results[1].executed_at_ms >= 20

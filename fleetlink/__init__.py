"""Relay, scenario replay and simulated devices for a robot fleet."""

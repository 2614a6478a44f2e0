from coachess.realtime.channel import ChannelState, RealtimeChannel, table_topic

__all__ = [
    "ChannelState",
    "RealtimeChannel",
    "table_topic",
]

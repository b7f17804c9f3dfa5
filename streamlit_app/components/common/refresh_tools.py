import streamlit as st
from utils.event_channel import EventChannel

REFRESH_TOPIC = "refresh"


def refresh_cache(channel: EventChannel, label: str = "Refresh", key: str = "refresh_button") -> bool:
    """
    Renders a refresh button. When clicked, clears Streamlit's data cache and
    tells the listeners on `channel` to reload.

    Returns:
        bool: True if the button was clicked, False otherwise.
    """
    clicked = st.button(label, key=key)
    if clicked:
        st.cache_data.clear()
        channel.publish(REFRESH_TOPIC)
    return clicked

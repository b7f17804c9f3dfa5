import streamlit as st
from utils.event_channel import PrintSession


class StateManager:
    @staticmethod
    def get(scope: str, id_: str, key:str):
        return st.session_state.get(f"{scope}:{id_}:{key}")

    @staticmethod
    def set(scope: str, id_: str, key: str, value):
        st.session_state[f"{scope}:{id_}:{key}"] = value

    @staticmethod
    def clear(scope: str, id_: str):
        keys_to_delete = [k for k in st.session_state if k.startswith(f"{scope}:{id_}:")]
        for k in keys_to_delete:
            del st.session_state[k]

    @staticmethod
    def print_session(dialog_id: str) -> PrintSession:
        """The dialog's print session, created on first use."""
        session = StateManager.get("print", dialog_id, "session")
        if session is None or not session.active:
            session = PrintSession(dialog_id)
            StateManager.set("print", dialog_id, "session", session)
        return session

    @staticmethod
    def close_print_session(dialog_id: str):
        session = StateManager.get("print", dialog_id, "session")
        if session is not None:
            session.close()
        StateManager.clear("print", dialog_id)

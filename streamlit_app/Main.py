# streamlit_app.py

import streamlit as st
from db.base import Base, get_engine
import models.product_models  # noqa: F401  (registers the tables on Base)

st.set_page_config(page_title="Shop Labels", layout="wide")

# Local development against SQLite creates the tables on first run.
if get_engine().dialect.name == "sqlite":
    Base.metadata.create_all(get_engine())

st.title("Shop Labels")
st.write("Use **Labels** in the sidebar to preview and print thermal product labels.")

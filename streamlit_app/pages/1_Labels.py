import streamlit as st
from components.label.label_form import render_label_form


st.title("Label Printing")

# --- Render Label UI ---
render_label_form()

import streamlit as st
import pandas as pd

from wellhead.config import setup_logging
from wellhead.db import (
    get_engine_and_session,
    list_investors_df,
    list_projects_df,
    list_revenue_df,
    list_stakes_df,
)
from wellhead.money import format_usd
from wellhead.portfolio import project_history, revenue_growth


@st.cache_resource(show_spinner=False)
def _session_factory():
    _, SessionLocal = get_engine_and_session()
    return SessionLocal


def ui_overview(SessionLocal):
    st.header("Vue d'ensemble")
    with SessionLocal() as s:
        proj_df = list_projects_df(s)
        inv_df = list_investors_df(s)
        stk_df = list_stakes_df(s)
        rev_df = list_revenue_df(s)
        growth = revenue_growth(s)

    total_raised = (
        0.0
        if stk_df.empty
        else float(stk_df["invested_amount"].astype(float).fillna(0).sum())
    )
    total_revenue = (
        0.0
        if rev_df.empty
        else float(rev_df["total_revenue"].astype(float).fillna(0).sum())
    )
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Projets", 0 if proj_df.empty else proj_df.shape[0])
    c2.metric("Investisseurs", 0 if inv_df.empty else inv_df.shape[0])
    c3.metric("Capital investi", format_usd(total_raised))
    c4.metric("Distribué aux investisseurs", format_usd(total_revenue))

    if growth.empty:
        st.info("Aucun mois calculé. Passez par le panneau Admin.")
        return
    st.subheader("Revenu investisseurs par mois (tous projets)")
    st.bar_chart(growth.set_index("label")["total_revenue"])
    last = growth.iloc[-1]
    if pd.notna(last["growth_pct"]):
        st.caption(f"{last['label']}: {last['growth_pct']:+.1f}% vs mois précédent")


def ui_projects(SessionLocal):
    st.header("Projets")
    with SessionLocal() as s:
        proj_df = list_projects_df(s)
    if proj_df.empty:
        st.info("Aucun projet.")
        return
    st.dataframe(proj_df, width="stretch")
    proj_map = {f"{r.name} ({r.project_id})": r.project_id for r in proj_df.itertuples()}
    label = st.selectbox("Projet", list(proj_map.keys()), key="proj_hist_select")
    with SessionLocal() as s:
        hist = project_history(s, proj_map[label])
    if hist.empty:
        st.info("Aucun historique de revenu pour ce projet.")
        return
    st.subheader("Historique mensuel")
    st.dataframe(hist, width="stretch")
    try:
        st.line_chart(hist.sort_values(["year", "month"]).set_index("label")["revenue"])
    except Exception:
        pass


def main():
    setup_logging()
    st.set_page_config(page_title="Wellhead — Portail investisseurs", layout="wide")
    st.title("Portail investisseurs")

    try:
        SessionLocal = _session_factory()
    except Exception as e:
        st.error(f"DB KO: {e}")
        return

    page = st.sidebar.radio(
        "Navigation", options=["Vue d'ensemble", "Projets"], index=0, key="main_nav_radio"
    )
    if page == "Vue d'ensemble":
        ui_overview(SessionLocal)
    elif page == "Projets":
        ui_projects(SessionLocal)


if __name__ == "__main__":
    main()

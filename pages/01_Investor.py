from datetime import date

import streamlit as st

from wellhead.config import load_rates, setup_logging
from wellhead.db import (
    available_periods,
    get_engine_and_session,
    get_investor_by_email,
    list_investors_df,
    list_stakes_df,
)
from wellhead.money import format_usd
from wellhead.portfolio import investor_portfolio, payout_timeseries
from wellhead.statements import investor_statement, statement_to_frame

setup_logging()
st.set_page_config(page_title="Wellhead — Investisseur", layout="wide")
st.title("Vue Investisseur")

# Vérifs
try:
    engine, SessionLocal = get_engine_and_session()
    st.sidebar.success("Base de données prête")
except Exception as e:
    st.sidebar.error(f"DB KO: {e}")
    st.stop()

rates = load_rates()

# Sélection par email (clé métier), sinon liste
email = st.sidebar.text_input("Email investisseur")
with SessionLocal() as s:
    inv = get_investor_by_email(s, email) if email else None
    inv_df = list_investors_df(s)
if inv is not None:
    inv_id, inv_name = inv.investor_id, inv.name or inv.investor_id
elif not inv_df.empty:
    inv_map = {f"{r.name} ({r.investor_id})": r.investor_id for r in inv_df.itertuples()}
    label = st.sidebar.selectbox("Investisseur", list(inv_map.keys()))
    inv_id = inv_map[label]
    inv_name = inv_df.loc[inv_df["investor_id"] == inv_id, "name"].iloc[0] or inv_id
else:
    st.info("Aucun investisseur.")
    st.stop()

T_overview, T_history, T_statement = st.tabs(
    ["📊 Portefeuille", "💸 Historique des payouts", "🧾 Relevé mensuel"]
)

with T_overview:
    st.subheader(f"Portefeuille — {inv_name}")
    with SessionLocal() as s:
        port = investor_portfolio(s, inv_id)
    if port.empty:
        st.info("Aucun investissement pour cet investisseur.")
    else:
        c1, c2, c3 = st.columns(3)
        invested = float(port["invested_amount"].sum())
        total = float(port["total_payouts"].sum())
        c1.metric("Investi", format_usd(invested))
        c2.metric("Payouts cumulés", format_usd(total))
        c3.metric("Rendement", f"{(total / invested * 100) if invested > 0 else 0:,.1f}%")
        st.dataframe(port)

with T_history:
    with SessionLocal() as s:
        stakes = list_stakes_df(s)
    projects = sorted(stakes.loc[stakes["investor_id"] == inv_id, "project_id"].unique())
    choice = st.selectbox("Projet", ["(tous)"] + list(projects), key="hist_project")
    with SessionLocal() as s:
        ts = payout_timeseries(s, inv_id, None if choice == "(tous)" else choice)
    if ts.empty:
        st.info("Aucun payout enregistré.")
    else:
        st.subheader("Payout mensuel et cumul")
        st.line_chart(ts.set_index("label")[["monthly", "cumulative"]])
        st.caption(f"Investissement récupéré: {ts['pct_recovered'].iloc[-1]:,.1f}%")
        st.dataframe(ts)

with T_statement:
    st.subheader("Relevé de distribution")
    with SessionLocal() as s:
        periods = set()
        for pid in stakes.loc[stakes["investor_id"] == inv_id, "project_id"].unique():
            periods.update(available_periods(s, pid))
    if not periods:
        st.info("Aucun mois disponible.")
    else:
        options = [f"{y:04d}-{m:02d}" for y, m in sorted(periods, reverse=True)]
        period = st.selectbox("Mois", options, index=0)
        year, month = (int(x) for x in period.split("-"))
        with SessionLocal() as s:
            stmt = investor_statement(s, inv_id, year, month, rates)
        if not stmt.lines:
            st.info("Aucune distribution pour ce mois.")
        else:
            for pid, lines in stmt.projects.items():
                name = lines[0].project_name or pid
                st.markdown(f"**{name}** — {format_usd(stmt.project_total(pid))}")
                for line in lines:
                    if line.degraded is not None:
                        # Indication discrète, pas bloquante
                        st.caption(f"ⓘ Chiffres reconstitués partiellement: {line.degraded}")
                    elif not line.reconciles:
                        st.caption(
                            f"ⓘ Écart de {format_usd(line.discrepancy)} avec le montant versé"
                        )
            df = statement_to_frame(stmt)
            st.dataframe(df)
            st.metric("Total du mois", format_usd(stmt.total_distribution))
            st.download_button(
                "Télécharger (CSV)",
                df.to_csv(index=False).encode("utf-8"),
                file_name=f"releve_{inv_id}_{stmt.period}.csv",
                mime="text/csv",
            )
            st.caption(f"Généré le {date.today():%Y-%m-%d}")

from datetime import date

import pandas as pd
import streamlit as st

from wellhead.calculator import calculate_payout
from wellhead.config import load_rates, setup_logging
from wellhead.db import (
    add_or_update_stake,
    get_engine_and_session,
    list_distributions_df,
    list_investors_df,
    list_projects_df,
    list_revenue_df,
    list_stakes_df,
    load_ownership,
    remove_stake,
    set_project_status,
    upsert_investor,
    upsert_project,
)
from wellhead.errors import ConcurrentPayoutError, PersistenceError, ValidationError
from wellhead.ledger import ProductionInput, ownership_summary, parse_period
from wellhead.models import PROJECT_STATUSES
from wellhead.money import format_usd
from wellhead.persistence import persist_payout, remember_revision, remembered_revision
from wellhead.portfolio import investor_return_summary, project_history

setup_logging()
st.set_page_config(page_title="Wellhead — Admin", layout="wide")
st.title("Panneau Admin")

ADMIN_PASSWORD = st.secrets.get("ADMIN_PASSWORD", "")

# Auth simple
pw = st.sidebar.text_input("Mot de passe admin", type="password")
if not ADMIN_PASSWORD or pw != ADMIN_PASSWORD:
    st.error("Accès admin refusé")
    st.stop()

# Vérifs
try:
    engine, SessionLocal = get_engine_and_session()
    st.sidebar.success("Base de données prête")
except Exception as e:
    st.sidebar.error(f"DB KO: {e}")
    st.stop()

rates = load_rates()
st.sidebar.caption(
    f"Severance: {rates.severance_tax_rate * 100}% • Part investisseurs: {rates.investor_pool_share * 100}%"
)

T_proj, T_inv, T_stk, T_payout, T_hist = st.tabs(
    ["🛢️ Projets", "👤 Investisseurs", "📌 Stakes", "💸 Payout mensuel", "📈 Historique"]
)

with SessionLocal() as s:
    proj_df = list_projects_df(s)
proj_map = {f"{r.name} ({r.project_id})": r.project_id for r in proj_df.itertuples()}

with T_proj:
    st.subheader("Projets")
    st.dataframe(proj_df)

    st.markdown("---")
    st.subheader("Ajouter / Mettre à jour un projet")
    with st.form("add_proj"):
        project_id = st.text_input("ID projet")
        name = st.text_input("Nom")
        location = st.text_input("Localisation")
        status = st.selectbox("Statut", list(PROJECT_STATUSES))
        total_units = st.number_input("Unités", min_value=0, value=0, step=1)
        target_raise = st.number_input("Objectif de levée ($)", min_value=0.0, value=0.0, step=1000.0)
        submit = st.form_submit_button("Enregistrer")
        if submit and name:
            try:
                with SessionLocal() as s:
                    upsert_project(
                        s,
                        project_id=project_id or name.lower().replace(" ", "_"),
                        name=name,
                        location=location or None,
                        status=status,
                        total_units=int(total_units) or None,
                        target_raise=str(target_raise),
                    )
                    s.commit()
                st.success("Projet enregistré")
            except ValidationError as e:
                st.error(f"Champ {e.field}: {e.message}")

    if proj_map:
        st.subheader("Changer le statut")
        c1, c2 = st.columns(2)
        with c1:
            lbl = st.selectbox("Projet", list(proj_map.keys()), key="status_proj")
        with c2:
            new_status = st.selectbox("Nouveau statut", list(PROJECT_STATUSES), key="status_new")
        if st.button("Appliquer le statut"):
            with SessionLocal() as s:
                set_project_status(s, proj_map[lbl], new_status)
                s.commit()
            st.success("Statut mis à jour")

with T_inv:
    st.subheader("Investisseurs")
    with SessionLocal() as s:
        inv_df = list_investors_df(s)
    st.dataframe(inv_df)

    st.markdown("---")
    st.subheader("Ajouter / Mettre à jour un investisseur")
    with st.form("add_inv"):
        inv_id = st.text_input("ID (laisser vide pour créer)")
        name = st.text_input("Nom")
        email = st.text_input("Email")
        phone = st.text_input("Téléphone")
        active = st.checkbox("Actif", value=True)
        notes = st.text_area("Notes", "")
        submit = st.form_submit_button("Enregistrer")
        if submit and name:
            try:
                with SessionLocal() as s:
                    upsert_investor(
                        s,
                        investor_id=inv_id or name.lower().replace(" ", "_"),
                        name=name,
                        email=email or None,
                        phone=phone or None,
                        active=active,
                        notes=notes or None,
                    )
                    s.commit()
                st.success("Investisseur enregistré")
            except ValidationError as e:
                st.error(f"Champ {e.field}: {e.message}")

    st.markdown("---")
    st.subheader("Rendement par investisseur")
    with SessionLocal() as s:
        st.dataframe(investor_return_summary(s))

with T_stk:
    st.subheader("Stakes")
    with SessionLocal() as s:
        stks_df = list_stakes_df(s)
    st.dataframe(stks_df)

    st.markdown("---")
    st.subheader("Ajouter / Mettre à jour un stake")
    with st.form("add_stk"):
        investor_id = st.text_input("Investor ID")
        lbl = st.selectbox("Projet", list(proj_map.keys()) if proj_map else ["—"])
        amount = st.number_input("Montant investi ($)", min_value=0.0, value=0.0, step=100.0)
        pct = st.number_input("% détenu", min_value=0.0, max_value=100.0, value=0.0, step=0.01)
        start = st.date_input("Début", value=date.today())
        submit = st.form_submit_button("Enregistrer")
        if submit and investor_id and proj_map:
            try:
                with SessionLocal() as s:
                    add_or_update_stake(
                        s,
                        investor_id=investor_id,
                        project_id=proj_map[lbl],
                        invested_amount=str(amount),
                        percentage_owned=str(pct),
                        start_date=start,
                    )
                    s.commit()
                st.success("Stake enregistré")
            except ValidationError as e:
                st.error(f"Champ {e.field}: {e.message}")

    st.subheader("Retirer un investisseur d'un projet")
    with st.form("rm_stk"):
        rm_investor = st.text_input("Investor ID", key="rm_inv")
        rm_lbl = st.selectbox("Projet", list(proj_map.keys()) if proj_map else ["—"], key="rm_proj")
        if st.form_submit_button("Retirer", type="primary") and rm_investor and proj_map:
            with SessionLocal() as s:
                removed = remove_stake(s, rm_investor, proj_map[rm_lbl])
                s.commit()
            if removed:
                st.success("Stake supprimé")
            else:
                st.warning("Aucun stake correspondant")

with T_payout:
    st.subheader("Payout mensuel — production × prix → distributions")
    if not proj_map:
        st.info("Créez d'abord un projet.")
    else:
        lbl = st.selectbox("Projet", list(proj_map.keys()), key="payout_proj")
        pid = proj_map[lbl]
        period = st.text_input("Mois (YYYY-MM)", value=date.today().strftime("%Y-%m"))
        c1, c2, c3 = st.columns(3)
        with c1:
            total_barrels = st.text_input("Barils produits", "")
        with c2:
            price = st.text_input("Prix par baril ($)", "")
        with c3:
            expenses = st.text_input("Frais d'exploitation ($)", "0")

        with SessionLocal() as s:
            stakes = load_ownership(s, pid)
        summary = ownership_summary(stakes)
        st.caption(
            f"{summary['investors']} investisseurs • {summary['allocated_pct']}% alloué ({summary['status']})"
        )

        # Surcharges de barils de base (par investisseur)
        overrides = {}
        with st.expander("Ajuster les barils de base par investisseur"):
            for stk in stakes:
                val = st.text_input(
                    f"{stk.investor_name or stk.investor_id}",
                    value="",
                    key=f"ovr_{pid}_{stk.investor_id}",
                    placeholder="barils totaux par défaut",
                )
                if val.strip():
                    overrides[stk.investor_id] = val

        result = None
        production = None
        if total_barrels and price:
            try:
                year, month = parse_period(period)
                production = ProductionInput.build(
                    project_id=pid,
                    year=year,
                    month=month,
                    total_barrels=total_barrels,
                    price_per_barrel=price,
                    operating_expenses=expenses or 0,
                    base_barrel_overrides=overrides,
                )
                result = calculate_payout(production, stakes, rates)
            except ValidationError as e:
                st.error(f"Champ {e.field}: {e.message}")

        if result is not None and production is not None:
            k1, k2, k3, k4 = st.columns(4)
            k1.metric("Revenu brut", format_usd(result.gross_revenue))
            k2.metric("Severance", f"-{format_usd(result.severance_tax)}")
            k3.metric("Pool investisseurs", format_usd(result.investor_pool))
            k4.metric("Payout net investisseurs", format_usd(result.net_investor_payout))
            st.caption(
                f"Revenu net {format_usd(result.net_revenue)} • Part société {format_usd(result.company_revenue)} • Frais {format_usd(result.operating_expenses)}"
            )
            if result.net_investor_payout < 0:
                st.warning("Les frais dépassent le pool investisseurs: distributions négatives.")
            st.dataframe(result.to_frame())

            # Révision lue à la prévisualisation, conservée jusqu'au clic (rerun Streamlit)
            with SessionLocal() as s:
                rev_seen = remembered_revision(
                    st.session_state, s, pid, production.year, production.month
                )
            if rev_seen:
                st.info(f"Période déjà calculée (révision {rev_seen}): elle sera écrasée.")
            if st.button("Process Payout", type="primary"):
                try:
                    with SessionLocal() as s:
                        new_rev = persist_payout(s, production, result, expected_revision=rev_seen)
                    remember_revision(st.session_state, pid, production.year, production.month, new_rev)
                    st.success(f"Payout enregistré (révision {new_rev})")
                except ConcurrentPayoutError:
                    remember_revision(st.session_state, pid, production.year, production.month, None)
                    st.error("La période a été recalculée entre-temps. Rechargez la page.")
                except PersistenceError as e:
                    st.error(f"Échec d'enregistrement: {e.message}. Réessayez.")

with T_hist:
    st.subheader("Historique par projet")
    if proj_map:
        lbl = st.selectbox("Projet", list(proj_map.keys()), key="hist_proj")
        with SessionLocal() as s:
            hist = project_history(s, proj_map[lbl])
            rev_df = list_revenue_df(s, proj_map[lbl])
            dist_df = list_distributions_df(s, project_id=proj_map[lbl])
        if hist.empty:
            st.info("Aucun mois calculé pour ce projet.")
        else:
            st.dataframe(hist)
            try:
                st.bar_chart(hist.set_index("label")["total_payout"])
            except Exception:
                pass
            with st.expander("Détail brut"):
                st.dataframe(rev_df)
                st.dataframe(dist_df if not dist_df.empty else pd.DataFrame())

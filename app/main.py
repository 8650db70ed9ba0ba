"""
Streamlit Frontend for Cash Desk

This is the interface the organization's staff use daily to record
money coming in and going out.

DESIGN PRINCIPLES:
1. One route guard: every render asks the access resolver whether the
   current page may be shown, and redirects otherwise
2. The sidebar only lists the tabs the session may open
3. Forms are validated before anything is written; issues are shown inline
4. Every failure degrades to a message on the page
"""

import asyncio
from datetime import date
from decimal import Decimal

import streamlit as st

from cashdesk.access import (
    AccessCodeRejectedError,
    PermissionDeniedError,
    can_modify,
    compute_visible_tabs,
    landing_path,
    match_route,
    resolve_access,
    route_parameter,
)
from cashdesk.config import get_settings, validate_all_settings
from cashdesk.models import (
    INFLOW_SOURCE_LABELS,
    ActivityType,
    AppPath,
    EntityType,
    ExpenseStatus,
    InflowSource,
    Role,
)
from cashdesk.orchestrator import AppComponents, create_app_components
from cashdesk.queries import HistoryQuery, export_filename
from cashdesk.services.storage import StorageError
from cashdesk.validation import FormValidator, ValidationFailedError


# Page configuration
st.set_page_config(
    page_title="Cash Desk",
    page_icon="💰",
    layout="wide",
    initial_sidebar_state="expanded",
)

# Errors shown to the user instead of crashing the page
USER_ERRORS = (ValidationFailedError, PermissionDeniedError, StorageError, ValueError)

ROLE_LABELS = {
    Role.NONE: "Aucun rôle",
    Role.USER: "Utilisateur",
    Role.CASH_INFLOW: "Entrées",
    Role.EXPENSES: "Dépenses",
    Role.PCA: "PCA",
    Role.DASHBOARD_ONLY: "Tableau de bord uniquement",
    Role.ADMIN: "Administrateur",
}


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components() -> AppComponents:
    """Get or create application components (cached)."""
    return create_app_components(use_storage=True)


def money(amount: Decimal) -> str:
    currency = get_settings().app.currency_label
    return f"{amount:,.2f} {currency}".replace(",", " ")


def show_error(error: Exception) -> None:
    if isinstance(error, ValidationFailedError):
        st.error(FormValidator.get_user_friendly_summary(error.result))
    else:
        st.error(str(error))


def navigate(path: str) -> None:
    st.session_state.path = path
    st.rerun()


# =============================================================================
# ENTRY POINT / ROUTE GUARD
# =============================================================================

def main():
    """Main application entry point."""
    components = get_components()

    if "session" not in st.session_state:
        st.session_state.session = None
    if "path" not in st.session_state:
        st.session_state.path = AppPath.LOGIN

    session = st.session_state.session
    if session is None:
        render_login_page(components)
        return

    decision = resolve_access(session, st.session_state.path)
    if not decision.allowed:
        target = decision.redirect_path or AppPath.DASHBOARD
        # The redirect target may itself be closed to this session
        if target != AppPath.LOGIN and not resolve_access(session, target).allowed:
            target = AppPath.DASHBOARD
        navigate(target)

    render_sidebar(components)

    pages = {
        AppPath.DASHBOARD: render_dashboard_page,
        AppPath.PROJECTS: render_projects_page,
        AppPath.ARTICLES: render_articles_page,
        AppPath.CATEGORIES: render_articles_page,
        AppPath.UNITS: render_units_page,
        AppPath.USERS: render_users_page,
        AppPath.SUPPLIERS: render_suppliers_page,
        AppPath.INFLOW: render_inflow_page,
        AppPath.INFLOW_HISTORY: render_inflow_history_page,
        AppPath.EXPENSES: render_expenses_page,
        AppPath.EXPENSE_HISTORY: render_expense_history_page,
        AppPath.ACTIVITY_HISTORY: render_activity_history_page,
        AppPath.CLOSING: render_closing_page,
    }
    path = st.session_state.path
    route = match_route(path)
    project_id = route_parameter(path) if route == AppPath.PROJECTS else None
    if project_id:
        render_project_detail_page(components, project_id)
        return
    pages.get(route, render_dashboard_page)(components)


def render_sidebar(components: AppComponents):
    session = st.session_state.session
    st.sidebar.title("💰 Cash Desk")
    st.sidebar.caption(f"{session.actor_name} · {ROLE_LABELS.get(session.role, session.role.value)}")
    st.sidebar.markdown("---")

    for tab in compute_visible_tabs(session):
        selected = tab.path == st.session_state.path
        if st.sidebar.button(tab.label, key=f"tab-{tab.id}", type="primary" if selected else "secondary"):
            navigate(tab.path)

    st.sidebar.markdown("---")
    if st.sidebar.button("Se déconnecter"):
        st.session_state.session = None
        navigate(AppPath.LOGIN)

    if session.has_full_access:
        with st.sidebar.expander("⚙️ Configuration"):
            st.caption(f"Stockage: {components.storage_backend}")
            status = validate_all_settings()
            for key in ("google_sheets", "access", "app"):
                if status.get(key, False):
                    st.success(f"✅ {key}")
                else:
                    st.error(f"❌ {key} - {status.get(f'{key}_error', 'Non configuré')}")


# =============================================================================
# LOGIN
# =============================================================================

def render_login_page(components: AppComponents):
    st.title("💰 Cash Desk")
    st.markdown("Connectez-vous avec votre email et votre code d'accès.")

    with st.form("login"):
        email = st.text_input("Email")
        display_name = st.text_input("Nom (optionnel)")
        code = st.text_input("Code d'accès", type="password")
        submitted = st.form_submit_button("Se connecter", type="primary")

    if submitted:
        try:
            session = run_async(components.auth.login(email, code, display_name))
        except AccessCodeRejectedError as e:
            st.error(str(e))
        except USER_ERRORS as e:
            show_error(e)
        else:
            st.session_state.session = session
            navigate(landing_path(session))


# =============================================================================
# DASHBOARD
# =============================================================================

def render_dashboard_page(components: AppComponents):
    session = st.session_state.session
    st.title("📊 Tableau de bord")

    try:
        summary = run_async(components.dashboard.summary(session))
        debt = run_async(components.reimbursements.current_debt())
    except StorageError as e:
        show_error(e)
        return

    col1, col2, col3 = st.columns(3)
    col1.metric("Solde actuel", money(summary.current_balance))
    col2.metric("Total des entrées", money(summary.total_inflow))
    col3.metric("Total des dépenses", money(summary.total_expenses))

    col1, col2, col3 = st.columns(3)
    col1.metric("Entrées du jour", money(summary.daily_inflow))
    col2.metric("Dépenses du jour", money(summary.daily_expenses))
    col3.metric("Transactions du jour", summary.daily_transactions)

    st.metric("Dette PCA", money(debt))

    if session.has_full_access:
        st.markdown("### Projets")
        rows = run_async(components.dashboard.project_summaries(session))
        if rows:
            st.dataframe(
                [
                    {
                        "Projet": project.name,
                        "Entrées": money(s.total_inflow),
                        "Dépenses": money(s.total_expenses),
                        "Solde": money(s.balance),
                    }
                    for project, s in rows
                ],
                use_container_width=True,
            )


# =============================================================================
# CATALOG PAGES
# =============================================================================

def render_catalog_list(components: AppComponents, kind: str, columns: dict):
    """Table of catalog entries with edit/delete for admins and authors."""
    session = st.session_state.session
    records = run_async(components.catalog.list_entries(kind))
    if not records:
        st.info("Aucun élément pour le moment.")
        return

    for record in records:
        cols = st.columns([4, 1, 1])
        cols[0].markdown(" · ".join(str(getattr(record, f) or "") for f in columns))
        if can_modify(session, record.user_id):
            if cols[1].button("Modifier", key=f"edit-{kind}-{record.id}"):
                st.session_state[f"editing_{kind}"] = record.id
                st.rerun()
            if cols[2].button("Supprimer", key=f"delete-{kind}-{record.id}"):
                try:
                    run_async(components.catalog.delete(session, kind, record.id))
                    st.success("Élément supprimé")
                    st.rerun()
                except USER_ERRORS as e:
                    show_error(e)


def render_catalog_form(components: AppComponents, kind: str, fields: dict):
    """Create form, or edit form when an entry is being edited."""
    session = st.session_state.session
    editing_id = st.session_state.get(f"editing_{kind}")
    current = run_async(components.catalog.get(kind, editing_id)) if editing_id else None

    with st.form(f"form-{kind}", clear_on_submit=current is None):
        values = {}
        for name, label in fields.items():
            default = getattr(current, name, None) if current else None
            if name.endswith("_date"):
                values[name] = st.date_input(label, value=default, key=f"{kind}-{name}")
            else:
                values[name] = st.text_input(label, value=default or "", key=f"{kind}-{name}")
        submitted = st.form_submit_button("Enregistrer" if current else "Ajouter", type="primary")

    if current and st.button("Annuler la modification", key=f"cancel-{kind}"):
        st.session_state[f"editing_{kind}"] = None
        st.rerun()

    if submitted:
        try:
            if current:
                run_async(components.catalog.update(session, kind, current.id, values))
                st.session_state[f"editing_{kind}"] = None
            else:
                run_async(components.catalog.create(session, kind, values))
            st.success("Enregistré")
            st.rerun()
        except USER_ERRORS as e:
            show_error(e)


def render_projects_page(components: AppComponents):
    st.title("📁 Projets")
    render_catalog_form(components, "projects", {
        "name": "Nom",
        "description": "Description",
        "start_date": "Date de début",
        "end_date": "Date de fin",
    })
    render_catalog_list(components, "projects", {"name": "", "description": ""})

    projects = project_options(components)
    if projects:
        st.markdown("---")
        selected = st.selectbox(
            "Détails du projet",
            options=list(projects),
            format_func=lambda pid: projects[pid],
            key="project-detail",
        )
        if st.button("Ouvrir", key="open-project"):
            navigate(f"{AppPath.PROJECTS}/{selected}")


def render_project_detail_page(components: AppComponents, project_id: str):
    """Income, spending and balance of one project, with its records."""
    session = st.session_state.session
    if st.button("← Retour aux projets", key="back-to-projects"):
        navigate(AppPath.PROJECTS)

    try:
        project, summary = run_async(components.catalog.project_summary(session, project_id))
        inflows = run_async(components.inflows.list_by_project(session, project_id))
        expenses = run_async(components.expenses.list_by_project(session, project_id))
    except USER_ERRORS as e:
        show_error(e)
        return

    st.title(f"📁 {project.name}")
    if project.description:
        st.caption(project.description)
    if project.start_date or project.end_date:
        st.markdown(f"**Période:** {project.start_date or '?'} → {project.end_date or '?'}")

    col1, col2, col3 = st.columns(3)
    col1.metric("Entrées", money(summary.total_inflow))
    col2.metric("Dépenses", money(summary.total_expenses))
    col3.metric("Solde", money(summary.balance))

    st.subheader(f"Entrées ({summary.inflow_count})")
    if inflows:
        st.dataframe(
            [
                {
                    "Date": i.inflow_date,
                    "Montant": money(i.amount),
                    "Source": i.source.label,
                    "Description": i.description,
                }
                for i in inflows
            ],
            use_container_width=True,
        )
    else:
        st.info("Aucune entrée pour ce projet.")

    st.subheader(f"Dépenses ({summary.expense_count})")
    if expenses:
        st.dataframe(
            [
                {
                    "Date": e.expense_date,
                    "Référence": e.reference or "-",
                    "Description": e.description,
                    "Statut": e.status.value,
                    "Total": money(e.total),
                }
                for e in expenses
            ],
            use_container_width=True,
        )
    else:
        st.info("Aucune dépense pour ce projet.")


def render_articles_page(components: AppComponents):
    session = st.session_state.session
    st.title("📦 Articles")
    render_catalog_form(components, "articles", {
        "designation": "Désignation",
        "reference": "Référence",
        "unit": "Unité",
    })
    render_catalog_list(components, "articles", {"designation": "", "reference": "", "unit": ""})

    if session.has_full_access:
        st.markdown("---")
        st.subheader("🏷️ Catégories")
        render_catalog_form(components, "categories", {"name": "Nom", "description": "Description"})
        render_catalog_list(components, "categories", {"name": "", "description": ""})


def render_units_page(components: AppComponents):
    st.title("📏 Unités")
    render_catalog_form(components, "units", {"name": "Nom", "description": "Description"})
    render_catalog_list(components, "units", {"name": "", "description": ""})


def render_suppliers_page(components: AppComponents):
    st.title("🚚 Fournisseurs")
    render_catalog_form(components, "suppliers", {
        "name": "Nom",
        "email": "Email",
        "phone": "Téléphone",
        "address": "Adresse",
        "description": "Description",
    })
    render_catalog_list(components, "suppliers", {"name": "", "phone": "", "email": ""})


# =============================================================================
# CASH INFLOWS
# =============================================================================

def project_options(components: AppComponents) -> dict[str, str]:
    return {p.id: p.name for p in run_async(components.catalog.list_entries("projects"))}


def render_inflow_page(components: AppComponents):
    session = st.session_state.session
    st.title("💵 Entrées")
    projects = project_options(components)
    if not projects:
        st.warning("Créez d'abord un projet.")
        return

    with st.form("inflow", clear_on_submit=True):
        inflow_date = st.date_input("Date", value=date.today())
        amount = st.number_input("Montant", min_value=0.0, step=1000.0)
        source = st.selectbox(
            "Source",
            options=list(InflowSource),
            format_func=lambda s: INFLOW_SOURCE_LABELS[s],
        )
        project_id = st.selectbox("Projet", options=list(projects), format_func=projects.get)
        description = st.text_area("Description")
        submitted = st.form_submit_button("Enregistrer l'entrée", type="primary")

    if submitted:
        try:
            inflow = run_async(components.inflows.record(session, {
                "inflow_date": inflow_date,
                "amount": str(amount),
                "source": source.value,
                "project_id": project_id,
                "description": description,
            }))
            st.success(f"Entrée de {money(inflow.amount)} enregistrée")
        except USER_ERRORS as e:
            show_error(e)

    st.markdown("### Dernières entrées")
    for inflow in run_async(components.inflows.list_for(session))[:10]:
        cols = st.columns([5, 1])
        cols[0].markdown(
            f"{inflow.inflow_date} · **{money(inflow.amount)}** · {inflow.source.label} · "
            f"{projects.get(inflow.project_id, '')} · {inflow.description}"
        )
        if can_modify(session, inflow.user_id) and cols[1].button("Supprimer", key=f"del-inflow-{inflow.id}"):
            try:
                run_async(components.inflows.delete(session, inflow.id))
                st.rerun()
            except USER_ERRORS as e:
                show_error(e)


def history_filters(key: str, projects: dict[str, str], extra_source: bool = False) -> HistoryQuery:
    """Filter widgets shared by the history pages."""
    page_size = get_settings().app.history_page_size
    col1, col2, col3 = st.columns(3)
    search = col1.text_input("Recherche", key=f"{key}-search")
    project_id = col2.selectbox(
        "Projet",
        options=[None] + list(projects),
        format_func=lambda p: "Tous les projets" if p is None else projects.get(p, p),
        key=f"{key}-project",
    )
    date_range = col3.date_input("Période", value=[], key=f"{key}-dates")

    source = None
    if extra_source:
        source = st.selectbox(
            "Source",
            options=[None] + list(InflowSource),
            format_func=lambda s: "Toutes les sources" if s is None else INFLOW_SOURCE_LABELS[s],
            key=f"{key}-source",
        )

    col1, col2, col3 = st.columns(3)
    sort_field = col1.selectbox("Trier par", ["date", "amount"], key=f"{key}-sort")
    sort_direction = col2.selectbox("Ordre", ["desc", "asc"], key=f"{key}-direction")
    page = col3.number_input("Page", min_value=1, value=1, step=1, key=f"{key}-page")

    date_from = date_range[0] if len(date_range) > 0 else None
    date_to = date_range[1] if len(date_range) > 1 else None
    return HistoryQuery(
        search=search,
        project_id=project_id,
        source=source,
        date_from=date_from,
        date_to=date_to,
        sort_field=sort_field,
        sort_direction=sort_direction,
        page=int(page),
        page_size=page_size,
    )


def render_inflow_history_page(components: AppComponents):
    session = st.session_state.session
    st.title("🕘 Historique des entrées")
    projects = project_options(components)
    query = history_filters("inflow-history", projects, extra_source=True)

    try:
        result = run_async(components.inflows.history(session, query))
        csv_text = run_async(components.inflows.export_csv(session, query))
    except USER_ERRORS as e:
        show_error(e)
        return

    st.caption(f"{result.total_count} entrée(s) · page {result.page}/{result.total_pages}")
    st.dataframe(
        [
            {
                "Date": i.inflow_date,
                "Montant": money(i.amount),
                "Source": i.source.label,
                "Description": i.description,
                "Projet": projects.get(i.project_id, i.project_id),
            }
            for i in result.items
        ],
        use_container_width=True,
    )
    st.download_button(
        "Exporter en CSV",
        data=csv_text,
        file_name=export_filename("historique_entrees"),
        mime="text/csv",
    )


# =============================================================================
# EXPENSES / PCA
# =============================================================================

def render_expenses_page(components: AppComponents):
    session = st.session_state.session
    st.title("🧾 Dépenses")

    projects = project_options(components)
    articles = {a.id: a for a in run_async(components.catalog.list_entries("articles"))}
    suppliers = {s.id: s for s in run_async(components.catalog.list_entries("suppliers"))}
    if not (projects and articles and suppliers):
        st.warning("Créez d'abord au moins un projet, un article et un fournisseur.")
    else:
        render_expense_form(components, projects, articles, suppliers)

    render_pca_section(components)

    if session.has_full_access:
        st.markdown("### Dépenses récentes")
        for expense in run_async(components.expenses.list_for(session))[:10]:
            cols = st.columns([5, 1, 1])
            cols[0].markdown(
                f"{expense.expense_date} · **{expense.reference or '-'}** · "
                f"{money(expense.total)} · {expense.description} · {expense.status.value}"
            )
            next_status = (
                ExpenseStatus.PENDING if expense.status == ExpenseStatus.VALIDATED else ExpenseStatus.VALIDATED
            )
            if cols[1].button(f"→ {next_status.value}", key=f"status-{expense.id}"):
                try:
                    run_async(components.expenses.set_status(session, expense.id, next_status))
                    st.rerun()
                except USER_ERRORS as e:
                    show_error(e)
            if cols[2].button("Supprimer", key=f"del-expense-{expense.id}"):
                try:
                    run_async(components.expenses.delete(session, expense.id))
                    st.rerun()
                except USER_ERRORS as e:
                    show_error(e)


def render_expense_form(components: AppComponents, projects: dict, articles: dict, suppliers: dict):
    session = st.session_state.session
    line_count = st.number_input("Nombre de lignes", min_value=1, max_value=20, value=1, step=1)

    with st.form("expense", clear_on_submit=True):
        expense_date = st.date_input("Date", value=date.today())
        project_id = st.selectbox("Projet", options=list(projects), format_func=projects.get)
        description = st.text_area("Description")
        pca_related = st.checkbox("Payée sur l'avance PCA")

        items = []
        for index in range(int(line_count)):
            st.markdown(f"**Ligne {index + 1}**")
            cols = st.columns(5)
            article_id = cols[0].selectbox(
                "Article", options=list(articles),
                format_func=lambda a: articles[a].designation, key=f"article-{index}",
            )
            supplier_id = cols[1].selectbox(
                "Fournisseur", options=list(suppliers),
                format_func=lambda s: suppliers[s].name, key=f"supplier-{index}",
            )
            quantity = cols[2].number_input("Quantité", min_value=0.0, value=1.0, key=f"qty-{index}")
            unit_price = cols[3].number_input("Prix unitaire", min_value=0.0, key=f"price-{index}")
            amount_given = cols[4].number_input("Montant donné", min_value=0.0, key=f"given-{index}")
            beneficiary = st.text_input("Bénéficiaire", key=f"beneficiary-{index}")
            items.append({
                "article_id": article_id,
                "supplier_id": supplier_id,
                "quantity": str(quantity),
                "unit_price": str(unit_price),
                "amount_given": str(amount_given),
                "beneficiary": beneficiary,
            })

        submitted = st.form_submit_button("Enregistrer la dépense", type="primary")

    if submitted:
        try:
            expense = run_async(components.expenses.create(session, {
                "expense_date": expense_date,
                "project_id": project_id,
                "description": description,
                "pca_related": pca_related,
                "items": items,
            }))
            st.success(f"Dépense {expense.reference} enregistrée ({money(expense.total)})")
        except USER_ERRORS as e:
            show_error(e)


def render_pca_section(components: AppComponents):
    session = st.session_state.session
    st.markdown("---")
    st.subheader("🏦 Remboursement PCA")

    try:
        debt = run_async(components.reimbursements.current_debt())
    except StorageError as e:
        show_error(e)
        return

    st.metric("Dette PCA actuelle", money(debt))
    if debt <= 0:
        st.info("Aucune dette PCA à rembourser.")
    else:
        with st.form("pca", clear_on_submit=True):
            amount = st.number_input("Montant", min_value=0.0, max_value=float(debt))
            description = st.text_input("Description")
            submitted = st.form_submit_button("Rembourser")

        if submitted:
            try:
                run_async(components.reimbursements.reimburse(session, {
                    "amount": str(amount),
                    "description": description,
                }))
                st.success("Remboursement enregistré avec succès")
                st.rerun()
            except USER_ERRORS as e:
                show_error(e)

    history = run_async(components.reimbursements.history())
    if history:
        with st.expander("Historique des remboursements"):
            st.dataframe(
                [
                    {"Date": r.reimbursement_date, "Montant": money(r.amount), "Description": r.description}
                    for r in history
                ],
                use_container_width=True,
            )


def render_expense_history_page(components: AppComponents):
    session = st.session_state.session
    st.title("🕘 Historique des dépenses")
    projects = project_options(components)
    query = history_filters("expense-history", projects)

    try:
        result = run_async(components.expenses.history(session, query))
        csv_text = run_async(components.expenses.export_csv(session, query))
    except USER_ERRORS as e:
        show_error(e)
        return

    st.caption(f"{result.total_count} dépense(s) · page {result.page}/{result.total_pages}")
    for expense in result.items:
        with st.expander(f"{expense.expense_date} · {expense.reference or '-'} · {money(expense.total)}"):
            st.markdown(f"**Projet:** {projects.get(expense.project_id, expense.project_id)}")
            st.markdown(f"**Description:** {expense.description}")
            st.dataframe(
                [
                    {
                        "Article": item.designation,
                        "Quantité": item.quantity,
                        "Prix unitaire": money(item.unit_price),
                        "Montant": money(item.amount),
                        "Fournisseur": item.supplier,
                        "Bénéficiaire": item.beneficiary or "",
                    }
                    for item in expense.items
                ],
                use_container_width=True,
            )
    st.download_button(
        "Exporter en CSV",
        data=csv_text,
        file_name=export_filename("historique_depenses"),
        mime="text/csv",
    )


# =============================================================================
# ACTIVITY HISTORY / CLOSING / USERS
# =============================================================================

def render_activity_history_page(components: AppComponents):
    session = st.session_state.session
    st.title("📜 Historique des activités")

    col1, col2, col3 = st.columns(3)
    search = col1.text_input("Recherche")
    entity_type = col2.selectbox(
        "Type d'entité", options=[None] + list(EntityType),
        format_func=lambda e: "Tous" if e is None else e.value,
    )
    activity_type = col3.selectbox(
        "Type d'activité", options=[None] + list(ActivityType),
        format_func=lambda a: "Tous" if a is None else a.value,
    )
    page = st.number_input("Page", min_value=1, value=1, step=1)
    query = HistoryQuery(
        search=search,
        entity_type=entity_type,
        activity_type=activity_type,
        page=int(page),
        page_size=get_settings().app.history_page_size,
    )

    try:
        result = run_async(components.activity.history(session, query))
        csv_text = run_async(components.activity.export_csv(session, query))
    except USER_ERRORS as e:
        show_error(e)
        return

    st.caption(f"{result.total_count} activité(s) · page {result.page}/{result.total_pages}")
    st.dataframe(
        [
            {
                "Date": entry.timestamp.strftime("%Y-%m-%d %H:%M"),
                "Utilisateur": entry.user_name,
                "Activité": entry.activity_type.value,
                "Entité": entry.entity_type.value,
                "Détails": entry.details,
                "Projet": entry.project_name or "",
            }
            for entry in result.items
        ],
        use_container_width=True,
    )
    st.download_button(
        "Exporter en CSV",
        data=csv_text,
        file_name=export_filename("historique_activites"),
        mime="text/csv",
    )


def render_closing_page(components: AppComponents):
    session = st.session_state.session
    st.title("🔒 Clôture")

    initial = run_async(components.closings.initial_balance())
    st.metric("Solde initial", money(initial))

    with st.form("closing", clear_on_submit=True):
        closing_date = st.date_input("Date de clôture", value=date.today())
        final_balance = st.number_input("Solde final compté", value=float(initial))
        notes = st.text_area("Notes")
        submitted = st.form_submit_button("Clôturer", type="primary")

    if submitted:
        try:
            closing = run_async(components.closings.record(session, {
                "closing_date": closing_date,
                "final_balance": str(final_balance),
                "notes": notes,
            }))
            st.success(f"Clôture enregistrée. Écart: {money(closing.difference)}")
        except USER_ERRORS as e:
            show_error(e)

    closings = run_async(components.closings.list_closings())
    if closings:
        st.dataframe(
            [
                {
                    "Date": c.closing_date,
                    "Solde initial": money(c.initial_balance),
                    "Solde final": money(c.final_balance),
                    "Écart": money(c.difference),
                    "Notes": c.notes,
                }
                for c in closings
            ],
            use_container_width=True,
        )


def render_users_page(components: AppComponents):
    session = st.session_state.session
    st.title("👥 Utilisateurs")

    try:
        users = run_async(components.users.list_users(session))
    except USER_ERRORS as e:
        show_error(e)
        return

    roles = [r for r in Role if r != Role.ADMIN]
    for user in users:
        with st.expander(f"{user.display_name or user.email} · {user.email}"):
            with st.form(f"user-{user.id}"):
                role = st.selectbox(
                    "Rôle", options=roles,
                    index=roles.index(user.role) if user.role in roles else 0,
                    format_func=lambda r: ROLE_LABELS[r],
                    key=f"role-{user.id}",
                )
                is_admin = st.checkbox("Administrateur", value=user.is_admin, key=f"admin-{user.id}")
                entries = st.checkbox("Accès aux entrées", value=user.access_entries, key=f"entries-{user.id}")
                expenses = st.checkbox("Accès aux dépenses", value=user.access_expenses, key=f"expenses-{user.id}")
                history = st.checkbox("Accès à l'historique", value=user.access_history, key=f"history-{user.id}")
                saved = st.form_submit_button("Enregistrer")

            if saved:
                try:
                    if role != user.role:
                        run_async(components.users.set_role(session, user.id, role))
                    if is_admin != user.is_admin:
                        run_async(components.users.set_admin(session, user.id, is_admin))
                    run_async(components.users.set_access_flags(session, user.id, entries, expenses, history))
                    st.success("Utilisateur mis à jour")
                except USER_ERRORS as e:
                    show_error(e)

            if user.id != session.user_id and st.button("Supprimer", key=f"del-user-{user.id}"):
                try:
                    run_async(components.users.delete_user(session, user.id))
                    st.rerun()
                except USER_ERRORS as e:
                    show_error(e)


if __name__ == "__main__":
    main()

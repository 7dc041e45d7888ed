from .db import (
    get_engine,
    session_scope,
    create_all,
    dispose_engine,
    create_contractor,
    get_contractor,
    get_contractor_by_phone,
    find_available_contractors,
    first_active_contractor,
    get_customer,
    get_customer_by_phone,
    get_or_create_customer,
    update_customer,
    create_job,
    get_job,
    update_job,
    transition_job,
    jobs_for_contractor,
    latest_job_for_customer,
    jobs_scheduled_on,
    jobs_completed_between,
    get_conversation,
    get_or_create_conversation,
    save_conversation,
    reset_idle_contexts,
    insert_message,
    messages_for_phone,
    create_dashboard_session,
    purge_expired_sessions,
)  # noqa: F401

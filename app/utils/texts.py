"""Outbound SMS copy. Keep every customer- or contractor-facing string here."""

from __future__ import annotations

from datetime import date, time
from typing import Optional

# ──────────────────────────────────────────────────────────────────────
# Generic
# ──────────────────────────────────────────────────────────────────────
RESET_CONFIRMATION = "No problem, I've cleared our conversation. Text me anytime to start again."
GENERIC_ERROR = "Sorry, something went wrong on my end. Please try again."
AGENT_UNAVAILABLE = "I'm having trouble right now. Please try again in a few minutes."
INTAKE_FALLBACK = "Can you tell me more details about the problem?"

# ──────────────────────────────────────────────────────────────────────
# Contractor onboarding
# ──────────────────────────────────────────────────────────────────────
ONBOARDING_WELCOME = "Welcome to JobFlow! Let's get your business set up.\n\nWhat's your business name?"
ASK_BUSINESS_NAME = "What's your business name?"
ASK_TRADE = "Great! What type of contractor are you? (e.g., plumber, electrician, handyman, HVAC, etc.)"
ASK_ZIP = "What's your primary service area zip code?"
BAD_ZIP = "Please provide a valid 5-digit zip code for your service area."
ASK_SERVICES = "What services do you offer? (describe what you do - I'll categorize them)"
ASK_FEE = "What's your base service call fee? (just the number, like 75 for $75)"
BAD_FEE = "Please provide a valid service fee as a number (e.g., 75 for $75)."
ASK_RATE = "What's your hourly rate? (just the number)"
BAD_RATE = "Please provide a valid hourly rate as a number."
ASK_MARKUP = "What's your emergency/after-hours markup? (e.g., 50 for 50% markup, or 0 for no markup)"
BAD_MARKUP = "Please provide a valid markup percentage (e.g., 50 for 50% markup)."
ASK_HOURS = "What are your available hours? (e.g., 'Mon-Fri 8-5, Sat 9-2' or 'Available 24/7')"
ONBOARDING_RESTART = "Sorry, something went wrong. Please text SETUP to start over."
ALREADY_CONTRACTOR = "You're already set up as a contractor! Text DASHBOARD for login link."


def onboarding_complete(business_name: str) -> str:
    return (
        f"🎉 Welcome to JobFlow, {business_name}!\n\n"
        "Your profile is set up and you're ready to receive job requests.\n\n"
        "Text DASHBOARD anytime to view your jobs and requests."
    )


# ──────────────────────────────────────────────────────────────────────
# Customer intake & quote approval
# ──────────────────────────────────────────────────────────────────────
NO_CONTRACTORS_IN_AREA = (
    "Sorry, I don't have any contractors available in your area right now. "
    "Please try again later or expand your search area."
)
QUOTE_APPROVAL_REPROMPT = "Please reply YES to book this job, or NO to cancel."
QUOTE_DECLINED = "No problem! Feel free to text me again if you need help with anything else."
QUOTE_NO_LONGER_AVAILABLE = (
    "Sorry, that contractor is no longer available, so I've cancelled this request. "
    "Text me again anytime for a new quote."
)
AWAITING_CONTRACTOR = "Thanks! Your request is with the contractor. I'll text you as soon as they respond."
JOB_SCHEDULED_ACK = "Your job is scheduled! I'll send reminders as the date approaches."


def quote_offer(category: str, formatted_quote: str) -> str:
    return (
        f"Based on what you described, this looks like a {category.replace('_', ' ')} job.\n\n"
        f"{formatted_quote}\n\n"
        f"{QUOTE_APPROVAL_REPROMPT}"
    )


def request_sent(business_name: str) -> str:
    return (
        f"Great! I've sent your request to {business_name}. They'll respond soon with "
        "confirmation or may call you directly. I'll keep you updated!"
    )


def awaiting_schedule(business_name: str) -> str:
    return f"{business_name} has accepted your job and will contact you to schedule a time."


def rating_thanks(rating: int, feedback: Optional[str]) -> str:
    message = f"Thank you for rating your service experience: {rating}/5 stars! ⭐"
    if feedback:
        message += f'\n\nYour feedback: "{feedback}"'
    return message + "\n\nWe appreciate your business! Text me anytime for future service needs."


# ──────────────────────────────────────────────────────────────────────
# Contractor desk
# ──────────────────────────────────────────────────────────────────────
CONTRACTOR_HELP = (
    "Commands: DASHBOARD (access your jobs), or respond to job notifications with "
    "A (approve), C (call customer), Q [amount] (custom quote), or X (pass)."
)
NO_PENDING_REQUESTS = "No pending job requests found."
NO_INVOICE_CANDIDATE = "No completed jobs found that need invoicing."
INVOICE_USAGE = "Format: INVOICE [amount] [description]\nExample: INVOICE 150 Plumbing repair - fixed leaky pipe"
NO_JOB_TODAY = "I couldn't find a job scheduled for you today."
NO_JOB_IN_PROGRESS = "I couldn't find a job in progress for you."
PASS_ACK = "Job passed. Looking for another contractor for the customer."
ON_THE_WAY_ACK = "Thanks! I've let the customer know you're on the way."


def money(amount: float | int | None) -> str:
    if amount is None:
        return "?"
    return f"{amount:,.0f}" if float(amount).is_integer() else f"{amount:,.2f}"


def approve_ack(customer_phone: str) -> str:
    return f"✅ Job approved! Customer has been notified. Please contact them to schedule: {customer_phone}"


def call_customer(customer_phone: str) -> str:
    return (
        f"📞 Customer contact info:\n{customer_phone}\n\n"
        "Please call them to discuss the job. Reply with A after you agree on details."
    )


def custom_quote_ack(amount: float) -> str:
    return f"💰 Custom quote of ${money(amount)} sent to customer. Waiting for their response."


def invoice_ack(amount: float) -> str:
    return f"📧 Invoice sent to customer for ${money(amount)}"


def transition_rejected(reason: str) -> str:
    return f"Sorry, I can't do that right now: {reason}."


def dashboard_login(url: str, code: str, minutes: int) -> str:
    return (
        "🔐 JobFlow Dashboard Access\n\n"
        f"Click here to view your jobs: {url}\n"
        f"Verification code: {code}\n\n"
        f"Link expires in {minutes} minutes for security."
    )


# ──────────────────────────────────────────────────────────────────────
# Lifecycle notifications
# ──────────────────────────────────────────────────────────────────────
REPLY_LEGEND = "Reply: A (approve), C (call customer), Q [amount] (custom quote), X (pass)"
NO_OTHER_CONTRACTORS = (
    "Sorry, the contractor isn't available for your job and no other contractors are "
    "available in your area right now. You can try again later or expand your search area."
)


def _when(day: Optional[date], at: Optional[time]) -> tuple[str, str]:
    return (
        day.strftime("%a %b %d") if day else "TBD",
        at.strftime("%I:%M %p").lstrip("0") if at else "TBD",
    )


def new_job_request(job, customer_phone: str) -> str:
    return (
        "🔔 NEW JOB REQUEST\n\n"
        f"Problem: {job.problem_description}\n"
        f"Location: {job.customer_address or job.customer_zip or 'not given'}\n"
        f"Urgency: {job.urgency_level.value}\n"
        f"Est. Cost: ${job.estimated_cost_min}-${job.estimated_cost_max}\n"
        f"Customer: {customer_phone}\n\n"
        f"{REPLY_LEGEND}"
    )


def job_approved(contractor) -> str:
    return (
        f"🎉 Great news! {contractor.business_name} has accepted your job.\n\n"
        "They'll contact you soon to schedule the work.\n\n"
        f"📞 {contractor.phone_number}\n"
        f"💼 {contractor.business_name}"
    )


def custom_quote(contractor_name: str, amount: float, category: str) -> str:
    return (
        f"💰 Updated Quote from {contractor_name}\n\n"
        f"For your {category.replace('_', ' ')} issue:\n"
        f"New quote: ${money(amount)}\n\n"
        f"{contractor_name} will follow up with you to confirm."
    )


def schedule_to_customer(job, contractor) -> str:
    day, at = _when(job.scheduled_date, job.scheduled_time)
    return (
        "📅 Job Scheduled!\n\n"
        f"Date: {day}\n"
        f"Time: {at}\n"
        f"Contractor: {contractor.business_name}\n"
        f"Phone: {contractor.phone_number}\n\n"
        f"Service: {job.service_category.replace('_', ' ')}\n"
        f"Location: {job.customer_address or job.customer_zip}\n\n"
        "I'll send reminders as the date approaches!"
    )


def schedule_to_contractor(job, customer_phone: str) -> str:
    day, at = _when(job.scheduled_date, job.scheduled_time)
    low = money(job.final_quote) if job.final_quote is not None else job.estimated_cost_min
    return (
        "📅 Job Confirmed!\n\n"
        f"Date: {day}\n"
        f"Time: {at}\n"
        f"Customer: {customer_phone}\n\n"
        f"Job: {job.problem_description}\n"
        f"Location: {job.customer_address or job.customer_zip}\n"
        f"Quote: ${low}-{job.estimated_cost_max}"
    )


def rescheduled(job) -> str:
    day, at = _when(job.scheduled_date, job.scheduled_time)
    return f"📅 Job Rescheduled\n\nNew Date: {day}\nNew Time: {at}"


def on_the_way(contractor_name: str) -> str:
    return f"🚛 {contractor_name} is on their way to your location!\n\nThey'll text or call when they arrive."


def invoice_request(customer_phone: str) -> str:
    return (
        f"💼 Job completed for {customer_phone}\n\n"
        "Send invoice? Reply with:\n"
        "INVOICE [amount] [description]\n\n"
        "Example: INVOICE 150 Plumbing repair - fixed leaky pipe"
    )


def invoice_to_customer(contractor, amount: float, description: str) -> str:
    return (
        f"🧾 INVOICE from {contractor.business_name}\n\n"
        f"Service: {description}\n"
        f"Amount: ${money(amount)}\n\n"
        "Please pay the contractor directly:\n"
        f"📞 {contractor.phone_number}\n\n"
        "Payment methods will vary by contractor."
    )


def job_cancelled(category: str, contractor_name: Optional[str]) -> str:
    label = category.replace("_", " ")
    if contractor_name:
        return (
            f"Your {label} job has been cancelled by {contractor_name}. "
            "Please text me if you'd like to find another contractor."
        )
    return f"Your {label} job request has been cancelled. Text me anytime if you need help again."


def reassigned(job, contractor_name: str) -> str:
    return (
        "Sorry, the contractor isn't available for your job right now, "
        f"but I found another contractor for your {job.service_category.replace('_', ' ')} job!\n\n"
        f"💰 New quote: ${job.estimated_cost_min}-{job.estimated_cost_max}\n"
        f"🔧 {contractor_name}\n\n"
        "They're reviewing your request now. I'll update you soon!"
    )


# ──────────────────────────────────────────────────────────────────────
# Reminders & follow-ups
# ──────────────────────────────────────────────────────────────────────
def day_before_to_contractor(job, customer_phone: str) -> str:
    day, at = _when(job.scheduled_date, job.scheduled_time)
    return (
        f"🔧 Reminder: You have a job tomorrow ({day})\n\n"
        f"Time: {at}\n"
        f"Customer: {customer_phone}\n"
        f"Job: {job.problem_description}\n"
        f"Location: {job.customer_address or job.customer_zip}"
    )


def day_before_to_customer(job, contractor_name: str) -> str:
    day, at = _when(job.scheduled_date, job.scheduled_time)
    return (
        f"📅 Reminder: Your service appointment is tomorrow ({day})\n\n"
        f"Time: {at}\n"
        f"Contractor: {contractor_name}\n"
        f"Service: {job.service_category.replace('_', ' ')}"
    )


def day_of_to_contractor(job, customer_phone: str) -> str:
    _, at = _when(job.scheduled_date, job.scheduled_time)
    return (
        "🔔 Job reminder: You have a scheduled appointment today!\n\n"
        f"Time: {at}\n"
        f"Customer: {customer_phone}\n"
        f"Location: {job.customer_address or job.customer_zip}\n\n"
        'Text "ON THE WAY" when you\'re heading to the job.'
    )


def completion_followup(contractor_name: str) -> str:
    return (
        f"✅ How did your service with {contractor_name} go?\n\n"
        "Please rate your experience (1-5) and any feedback:\n\n"
        "5 = Excellent\n4 = Good\n3 = Okay\n2 = Poor\n1 = Very Poor\n\n"
        "Just reply with your rating and any comments."
    )

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

RULE = "═" * 42
THIN_RULE = "─" * 42

MSG_RATE_LIMITED = (
    "⚠️ *Rate Limit Exceeded*\n\n"
    "Please wait {seconds} seconds before sending more messages.\n"
    "This helps us maintain quality service for all users."
)
MSG_BOT_MUTED = (
    "🔇 *Bot Muted*\n\n"
    "I will no longer respond to your messages.\n\n"
    "To reactivate me, send:\n"
    "• `activate bot`\n"
    "• `unmute bot`\n"
    "• `resume bot`\n\n"
    "_I'll still listen for these commands._"
)
MSG_BOT_ACTIVATED = "🔔 *Bot Activated!*\n\nI'm back and ready to assist you.\n\nType *help* to see what I can do."
MSG_FACTORY_CODES_MISSING = "⚠️ Please provide valid factory code(s).\n\n*Example:* MF 0235 average"
MSG_FACTORY_CODES_TOO_MANY = "⚠️ Maximum 5 factory codes per request."
MSG_FETCHING_FACTORY = "⏳ Fetching data for: {codes}..."
MSG_FACTORY_NOT_FOUND = "⚠️ No data found for: {codes}{sale}"
MSG_FETCHING_ELEVATION = "⏳ Fetching elevation data..."
MSG_ELEVATION_NOT_FOUND = "⚠️ No elevation data found for Sale {sale_no}."
MSG_FETCHING_REPORT = "⏳ Fetching market report..."
MSG_REPORT_SENT = "✅ Report sent successfully!"
MSG_REPORT_NOT_FOUND = "⚠️ Market report for Sale {sale_no} not found."
MSG_DEPARTMENT_PROMPT = (
    "📞 *DEPARTMENT CONTACTS*\n\n"
    "Please specify which department:\n\n"
    "• *Valuation* - Appraisals & reports\n"
    "• *Accounts* - Tax, VAT, invoices\n"
    "• *IT* - Technical support\n"
    "• *Marketing* - General inquiries\n\n"
    'Example: "I need help from accounting"'
)
MSG_CONNECTING = "⏳ Connecting to {department} Department..."
MSG_ROUTED = (
    "✅ *Thank you for your inquiry!*\n\n"
    "Your request has been forwarded to our *{department} Department*. "
    "Our team will review your message and respond shortly.\n\n"
    "📞 For urgent matters, please call our office directly."
)
MSG_ROUTE_FAILED = (
    "⚠️ Unable to route your request to the {department} Department.\n\n"
    "Please try again or contact us directly at:\n"
    "📞 {phone}\n"
    "📧 {email}"
)
MSG_IRRELEVANT = (
    "Thank you for your interest in Mercantile Produce Brokers.\n\n"
    "This is an automated tea brokering assistant. For HR inquiries, please contact our office directly:\n\n"
    "📞 {phone}\n"
    "📧 {email}\n\n"
    '_If you don\'t need bot assistance, I\'ll stay quiet. Type "help" if you need me later._'
)
MSG_GENERAL_NUDGE = (
    "👋 I'm here if you need:\n\n"
    "• 🏭 Factory data\n"
    "• 📊 Elevation averages\n"
    "• 📄 Market reports\n"
    "• 📞 Department contacts\n\n"
    "Type *help* for more info.\n\n"
    '_To mute me, send: "mute bot"_'
)
MSG_ERROR = (
    "⚠️ *An error occurred while processing your request.*\n\n"
    "Please try again in a moment. If the problem persists, "
    "contact our support team directly.\n\n"
    "📞 Support: {phone}"
)
MSG_SOURCE_UNAVAILABLE = "⚠️ Our data service is temporarily unavailable. Please try again in a few minutes."
MSG_SALE_NUMBER_REQUIRED = "⚠️ Please include a sale number.\n\n*Example:* {example}"

MAX_INPUT_CHARS = 2000


def sanitize_input(text: Optional[str], max_chars: int = MAX_INPUT_CHARS) -> str:
    if not text or not isinstance(text, str):
        return ""
    return text.replace("<", "").replace(">", "")[:max_chars].strip()


def format_local_time(moment: datetime, tz_name: str) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(ZoneInfo(tz_name)).strftime("%d %b %Y, %H:%M")


def build_welcome_message() -> str:
    return f"""*MIRA – Mercantile Intelligent Response Assistant 💡🤖*
MIRA is a smart assistant designed by MPBL IT.

{RULE}

📊 *AVAILABLE SERVICES*

*1️⃣ Factory Performance Data*
   Examples:
   • `MF 0235 average`
   • `MF0235 MF0777 performance`
   • `MF 1234 sale 38 data`

*2️⃣ Elevation Prices*
   Examples:
   • `elevation sale 38`
   • `UH averages sale 38`

*3️⃣ Market Reports*
   Examples:
   • `market report sale 38`
   • `sale 38 pdf report`

*4️⃣ Department Contacts*
   • *Valuation*: Appraisals, reports
   • *Accounts*: Tax, VAT, invoices, DOs
   • *IT*: Technical support
   • *Marketing*: General inquiries

{RULE}

💡 *Quick Commands*
   • `help` - Show this menu
   • `contact info` - Contact information
   • `status` - Bot statistics
   • `mute bot` - Stop bot responses
   • `unmute bot` - Resume bot responses

{RULE}

_I won't spam you! I only respond to specific requests._
_This welcome message appears once per day._

Type your request to get started!"""


def build_contact_info(email: str) -> str:
    return f"""📞 *CONTACT INFORMATION*
{RULE}

🏢 *Mercantile Produce Brokers Pvt Ltd*
🍃 Built on Trust & Strong Bonds

📧 Email: {email}
🌐 Website: www.merctea.lk
📍 133, Jawatta Rd, Colombo 05, Sri Lanka

⏰ *Business Hours*
Mon-Fri: 9:00 AM - 5:00 PM

{RULE}

For urgent matters, contact the relevant
department through this bot."""


def build_status_message(stats: dict) -> str:
    uptime = int(stats.get("uptime_seconds", 0))
    popular = stats.get("popular_intents") or []
    popular_lines = "\n".join(f"{i + 1}. {intent}: {count} requests" for i, (intent, count) in enumerate(popular))
    success_rate = 100 - float(stats.get("error_rate", 0.0))

    return f"""📊 *BOT STATUS & STATISTICS*
{RULE}

⏱️ *Uptime:* {uptime // 3600}h {(uptime % 3600) // 60}m
📬 *Total Messages:* {stats.get("total_messages", 0)}
👥 *Unique Users:* {stats.get("unique_users", 0)}
✅ *Success Rate:* {success_rate:.1f}%
⚡ *Avg Response:* {stats.get("average_response_time_ms", 0.0):.2f}ms

{THIN_RULE}

📈 *Popular Requests:*
{popular_lines or "No requests yet"}

{RULE}

✅ All systems operational"""


def format_forward_message(
    *,
    department: str,
    client_name: str,
    client_number: str,
    ticket_id: str,
    text: str,
    sent_at: datetime,
    tz_name: str,
) -> str:
    """Envelope sent to a department member; staff reply by quoting it."""
    return f"""🔔 *NEW {department.upper()} REQUEST*
{RULE}

👤 *Client:* {client_name}
📱 *Number:* +{client_number}
🕐 *Time:* {format_local_time(sent_at, tz_name)}
🆔 *Message ID:* {ticket_id}

{THIN_RULE}
💬 *Message:*
{text}
{RULE}

⚡ Reply to this message to send a response to the client."""


def format_staff_reply(*, department: str, staff_name: str, reply_text: str, sent_at: datetime, tz_name: str) -> str:
    return f"""✅ *RESPONSE FROM {department.upper()} DEPARTMENT*
{RULE}

👤 *From:* {staff_name}
🕐 *Time:* {format_local_time(sent_at, tz_name)}

{THIN_RULE}
💬 *Response:*
{reply_text}
{RULE}

Thank you for using Mercantile Produce Brokers!"""

"""文档路径约定。"""

BOOKINGS = "bookings"
USERS = "users"
CREWS = "crews"
SYNC_INTENTS = "syncIntents"
PAYMENT_DETAILS = "paymentDetails"


def booking_path(booking_id: str) -> str:
    return f"{BOOKINGS}/{booking_id}"


def customer_path(customer_id: str) -> str:
    return f"{USERS}/{customer_id}"


def mirror_collection(customer_id: str) -> str:
    return f"{USERS}/{customer_id}/{BOOKINGS}"


def mirror_path(booking_id: str, customer_id: str) -> str:
    return f"{mirror_collection(customer_id)}/{booking_id}"


def crew_path(crew_id: str) -> str:
    return f"{CREWS}/{crew_id}"


def intent_path(intent_id: str) -> str:
    return f"{SYNC_INTENTS}/{intent_id}"


def payment_records_collection(crew_name: str) -> str:
    # 名字中的路径分隔符替换掉，避免破坏层级
    safe_name = crew_name.replace("/", "-").replace("\\", "-")
    return f"{PAYMENT_DETAILS}/{safe_name}/records"

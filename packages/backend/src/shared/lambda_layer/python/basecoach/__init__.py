# Base Coach subscription and entitlement layer

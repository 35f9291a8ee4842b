GET_ORDERS = """
query Orders {
  getUser {
    market {
      offer_orders {
        list {
          id
          size
          status
          account
          seller_invoice_amount
        }
      }
    }
  }
}
"""

GET_NODE_ADDRESSES = """
query GetNodeAddresses($pubkey: String!) {
  getNode(pubkey: $pubkey) {
    graph_info {
      node {
        addresses {
          addr
        }
      }
    }
  }
}
"""

GET_SIGN_INFO = """
query GetSignInfo {
  getSignInfo {
    identifier
    message
  }
}
"""

LOGIN = """
mutation Login($identifier: String!, $signature: String!, $token: Boolean) {
  login(identifier: $identifier, signature: $signature, token: $token)
}
"""

CREATE_API_KEY = """
mutation CreateApiKey($seconds: Float, $description: String) {
  createApiKey(seconds: $seconds, description: $description)
}
"""

ACCEPT_ORDER = """
mutation AcceptOrder($orderId: String!, $invoice: String!) {
  sellerAcceptOrder(id: $orderId, request: $invoice)
}
"""

REJECT_ORDER = """
mutation RejectOrder($orderId: String!) {
  sellerRejectOrder(id: $orderId)
}
"""

CANCEL_ORDER = """
mutation CancelOrder($orderId: String!, $reason: OrderCancellationReason!) {
  sellerCancelOrder(id: $orderId, reason: $reason)
}
"""

ADD_TRANSACTION = """
mutation AddTransaction($orderId: String!, $txPoint: String!) {
  sellerAddTransaction(id: $orderId, transaction: $txPoint)
}
"""

import httpx
import os

# 服务器地址
BASE_URL = os.getenv("TRIAGE_BASE_URL", "http://localhost:8000")
PROJECT_ID = int(os.getenv("TRIAGE_PROJECT_ID", "1"))
API = f"{BASE_URL}/api/v1/failure-analysis"


def smoke_test():
    print(f"开始对 {BASE_URL} 进行冒烟测试 (项目 {PROJECT_ID})...")

    # 设置较长的超时时间，防止网络波动
    client = httpx.Client(timeout=30.0)

    # 1. 检查 API 文档 (服务连通性)
    try:
        resp = client.get(f"{BASE_URL}/docs")
        if resp.status_code == 200:
            print("✅ 步骤 1: API 文档访问正常 (200 OK)")
        else:
            print(f"❌ 步骤 1: API 文档访问失败 ({resp.status_code})")
            return
    except httpx.HTTPError as e:
        print(f"❌ 步骤 1: 无法连接服务器 ({e})")
        return

    params = {"timeWindow": "30"}

    # 2. 自动分类
    resp = client.post(f"{API}/projects/{PROJECT_ID}/auto-classify", params=params)
    if resp.status_code != 200:
        print(f"❌ 步骤 2: 自动分类失败 ({resp.status_code}): {resp.text}")
        return
    print(f"✅ 步骤 2: 自动分类完成, 新分类 {resp.json()['data']['classifiedCount']} 条")

    # 3. 汇总与明细必须一致
    summary = client.get(f"{API}/projects/{PROJECT_ID}/summary", params=params).json()["data"]
    cases = client.get(f"{API}/projects/{PROJECT_ID}/test-cases", params=params).json()["data"]
    if summary["totalFailures"] == len(cases):
        print(f"✅ 步骤 3: 汇总与明细一致 ({len(cases)} 条失败)")
    else:
        print(f"❌ 步骤 3: 汇总 {summary['totalFailures']} 与明细 {len(cases)} 不一致")

    # 4. 缺陷去重
    resp = client.post(f"{API}/projects/{PROJECT_ID}/deduplicate", params=params)
    if resp.status_code == 200:
        groups = resp.json()["data"]
        print(f"✅ 步骤 4: 去重完成, 共 {len(groups)} 个缺陷组")
    else:
        print(f"❌ 步骤 4: 去重失败 ({resp.status_code}): {resp.text}")
        return

    # 5. 证据与修复建议
    if cases:
        case_id = cases[0]["id"]
        evidence = client.get(f"{API}/test-cases/{case_id}/evidence")
        fixes = client.get(f"{API}/test-cases/{case_id}/suggested-fixes")
        if evidence.status_code == 200 and fixes.status_code == 200:
            print(f"✅ 步骤 5: 用例 {case_id} 的证据与建议可访问: {fixes.json()['data'][:2]}")
        else:
            print(f"❌ 步骤 5: 证据 ({evidence.status_code}) / 建议 ({fixes.status_code}) 请求失败")
    else:
        print("⚠️ 时间窗口内没有失败用例，跳过步骤 5。")

if __name__ == "__main__":
    smoke_test()
